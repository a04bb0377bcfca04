"""Team members upserted from team_member.* webhooks"""
from typing import Any, Dict, List

from database import transaction
from db_models import TeamMember
from .common import dump_raw, parse_timestamp, upsert

UPDATE_COLUMNS = (
    "given_name", "family_name", "email_address", "phone_number", "status",
    "is_owner", "updated_at", "raw_data",
)


def upsert_team_members(members: List[Dict[str, Any]], merchant_id: str) -> None:
    with transaction() as db:
        for m in members:
            upsert(
                db,
                TeamMember,
                {
                    "merchant_id": merchant_id,
                    "square_team_member_id": m["id"],
                    "given_name": m.get("given_name"),
                    "family_name": m.get("family_name"),
                    "email_address": m.get("email_address"),
                    "phone_number": m.get("phone_number"),
                    "status": m.get("status"),
                    "is_owner": bool(m.get("is_owner")),
                    "created_at": parse_timestamp(m.get("created_at")),
                    "updated_at": parse_timestamp(m.get("updated_at")),
                    "raw_data": dump_raw(m),
                },
                index_elements=("merchant_id", "square_team_member_id"),
                update_columns=UPDATE_COLUMNS,
            )

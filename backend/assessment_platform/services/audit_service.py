"""
Audit Service

Immutable, hash-chained audit trail. Logins, role switches, assessment
lifecycle changes and response reviews each append one entry whose hash
covers its content plus the previous entry's hash.
"""

import hashlib
import json
from uuid import uuid4

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_platform.models import AuditLog


class AuditService:
    """Immutable, hash-chained audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _calculate_hash(content: dict, previous_hash: str | None) -> str:
        """SHA-256 over the canonical JSON of the entry and the hash it links to."""
        raw = json.dumps({"content": content, "previous_hash": previous_hash or ""},
                         sort_keys=True, default=str)
        return hashlib.sha256(raw.encode()).hexdigest()

    async def _get_latest_hash(self) -> str | None:
        return await self.session.scalar(
            select(AuditLog.current_hash).order_by(AuditLog.id.desc()).limit(1)
        )

    @staticmethod
    def _content(event_type, actor, action, resource_type, resource_id, details) -> dict:
        return {
            "event_type": event_type,
            "actor": actor,
            "action": action,
            "resource_type": resource_type,
            "resource_id": resource_id,
            "details": details,
        }

    async def log_event(
        self,
        event_type: str,
        actor: str,
        action: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        details: dict | None = None,
        tenant_id: str | None = None,
    ) -> AuditLog:
        """
        Write an immutable audit entry.

        Args:
            event_type: e.g. "login", "assessment_created", "assessment_transitioned"
            actor: "<role_key>:<user_id>" or "system"
            action: Human-readable description
            resource_type: "assessment", "response", "role", ...
            resource_id: The ID of the affected resource
            details: Full event details as dict
        """
        previous_hash = await self._get_latest_hash()
        entry_details = details or {}
        current_hash = self._calculate_hash(
            self._content(event_type, actor, action, resource_type, resource_id, entry_details),
            previous_hash,
        )

        entry = AuditLog(
            event_id=str(uuid4()),
            event_type=event_type,
            tenant_id=tenant_id,
            actor=actor,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=entry_details,
            previous_hash=previous_hash,
            current_hash=current_hash,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def log_login(self, user_id: str, email: str, role_key: str, tenant_id: str) -> AuditLog:
        return await self.log_event(
            event_type="login",
            actor=f"{role_key}:{user_id}",
            action=f"User {email} logged in",
            resource_type="user",
            resource_id=user_id,
            tenant_id=tenant_id,
        )

    async def log_role_switched(self, user_id: str, old_role: str, new_role: str, tenant_id: str) -> AuditLog:
        return await self.log_event(
            event_type="role_switched",
            actor=f"{old_role}:{user_id}",
            action=f"Role switched: {old_role} → {new_role}",
            resource_type="user",
            resource_id=user_id,
            details={"old_role": old_role, "new_role": new_role},
            tenant_id=tenant_id,
        )

    async def log_assessment_created(self, assessment_id: str, name: str, template_id: str,
                                     actor: str, tenant_id: str) -> AuditLog:
        return await self.log_event(
            event_type="assessment_created",
            actor=actor,
            action=f"Assessment '{name}' created",
            resource_type="assessment",
            resource_id=assessment_id,
            details={"template_id": template_id},
            tenant_id=tenant_id,
        )

    async def log_assessment_updated(self, assessment_id: str, fields: list[str],
                                     actor: str, tenant_id: str) -> AuditLog:
        return await self.log_event(
            event_type="assessment_updated",
            actor=actor,
            action=f"Assessment {assessment_id} updated ({', '.join(sorted(fields))})",
            resource_type="assessment",
            resource_id=assessment_id,
            details={"fields": sorted(fields)},
            tenant_id=tenant_id,
        )

    async def log_assessment_transitioned(self, assessment_id: str, old_status: str, new_status: str,
                                          actor: str, tenant_id: str,
                                          post_actions: list[dict] | None = None) -> AuditLog:
        return await self.log_event(
            event_type="assessment_transitioned",
            actor=actor,
            action=f"Assessment {assessment_id} status: {old_status} → {new_status}",
            resource_type="assessment",
            resource_id=assessment_id,
            details={"old_status": old_status, "new_status": new_status,
                     "post_actions": post_actions or []},
            tenant_id=tenant_id,
        )

    async def log_response_submitted(self, response_id: str, assessment_id: str, question_id: str,
                                     actor: str, tenant_id: str) -> AuditLog:
        return await self.log_event(
            event_type="response_submitted",
            actor=actor,
            action=f"Response to {question_id} submitted",
            resource_type="response",
            resource_id=response_id,
            details={"assessment_id": assessment_id, "question_id": question_id},
            tenant_id=tenant_id,
        )

    async def log_response_reviewed(self, response_id: str, approved: bool,
                                    actor: str, tenant_id: str) -> AuditLog:
        return await self.log_event(
            event_type="response_reviewed",
            actor=actor,
            action=f"Response {response_id} {'approved' if approved else 'rejected'}",
            resource_type="response",
            resource_id=response_id,
            details={"approved": approved},
            tenant_id=tenant_id,
        )

    async def verify_chain_integrity(self) -> dict:
        """Replay the chain oldest-first; stop at the first entry that does not link or hash."""
        result = await self.session.execute(select(AuditLog).order_by(AuditLog.id.asc()))
        expected_prev: str | None = None
        checked = 0
        for entry in result.scalars():
            checked += 1
            if entry.previous_hash != expected_prev:
                reason = "previous_hash mismatch"
            elif entry.current_hash != self._calculate_hash(self._entry_content(entry), entry.previous_hash):
                reason = "current_hash mismatch (data tampered)"
            else:
                expected_prev = entry.current_hash
                continue
            return {"valid": False, "entries_checked": checked,
                    "first_invalid": entry.event_id, "reason": reason}
        return {"valid": True, "entries_checked": checked, "first_invalid": None}

    @classmethod
    def _entry_content(cls, entry: AuditLog) -> dict:
        return cls._content(entry.event_type, entry.actor, entry.action,
                            entry.resource_type, entry.resource_id, entry.details)

    @staticmethod
    def _filtered(query, filters: dict[str, str | None]):
        for column, value in filters.items():
            if value:
                query = query.where(getattr(AuditLog, column) == value)
        return query

    async def query_entries(self, *, limit: int = 50, offset: int = 0,
                            **filters: str | None) -> tuple[list[AuditLog], int]:
        """
        One page of entries, newest first, plus the total matching count.

        Filters are column equality checks on tenant_id, event_type,
        resource_type and resource_id; a None value is ignored.
        """
        unknown = set(filters) - {"tenant_id", "event_type", "resource_type", "resource_id"}
        if unknown:
            raise TypeError(f"Unknown audit filter(s): {', '.join(sorted(unknown))}")

        total = await self.session.scalar(self._filtered(select(func.count()).select_from(AuditLog), filters))
        page = await self.session.execute(
            self._filtered(select(AuditLog), filters)
            .order_by(AuditLog.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(page.scalars()), total or 0

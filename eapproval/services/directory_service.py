"""
Directory lookup — who approves for whom, and how to reach them.

The approval core only sees the ``Directory`` protocol. ``SqlDirectory`` is
the shipped implementation backed by the ``employees`` table; tests swap in
their own.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
import structlog

from eapproval.exceptions import NotFound
from eapproval.models.employee import Employee
from eapproval.services.chain_resolver import chain_from_mapping
from eapproval.services.workflow import ApproverChain

logger = structlog.get_logger()


@dataclass(frozen=True)
class Contact:
    user_id: str
    name: str
    email: str


class Directory(Protocol):
    async def find_approver_chain(self, user_id: str, document_type: str) -> ApproverChain: ...

    async def find_contact(self, user_id: str) -> Contact: ...


class SqlDirectory:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _get_employee(self, user_id: str) -> Optional[Employee]:
        try:
            emp_id = uuid.UUID(str(user_id))
        except ValueError:
            return None
        async with self._session_factory() as session:
            result = await session.execute(
                select(Employee).where(Employee.id == emp_id, Employee.is_active == True)  # noqa: E712
            )
            return result.scalar_one_or_none()

    async def find_approver_chain(self, user_id: str, document_type: str) -> ApproverChain:
        employee = await self._get_employee(user_id)
        if not employee:
            raise NotFound("Requester not found in directory", entity="employee", user_id=str(user_id))

        lines = employee.approval_lines or {}
        raw = lines.get(document_type) or lines.get("default")
        if not raw:
            logger.info("directory_chain_missing", user_id=str(user_id), document_type=document_type)
            raise NotFound(
                "No default approver chain configured",
                entity="approver_chain",
                document_type=document_type,
            )
        return chain_from_mapping(raw)

    async def find_contact(self, user_id: str) -> Contact:
        employee = await self._get_employee(user_id)
        if not employee or not employee.email:
            raise NotFound("Contact not found", entity="contact", user_id=str(user_id))
        return Contact(user_id=str(employee.id), name=employee.name, email=employee.email)

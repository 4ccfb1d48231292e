"""
TemplateService -- reusable transfer templates.

Responsibility:
    Stores a named source/destination pair with default item quantities so
    recurring transfers can be created in one call
    (TransferService.create_from_template).

Architecture position:
    Kernel > Services.

Invariants enforced:
    - Source and destination differ and both belong to the tenant.
    - default_qty > 0; one line per product.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import or_, select

from stock_kernel.domain.pagination import ArchiveFilter, Page
from stock_kernel.domain.principal import Principal
from stock_kernel.exceptions import (
    AlreadyArchivedError,
    EmptyTransferError,
    EntityNotFoundError,
    InvalidQuantityError,
    NotArchivedError,
    SameBranchTransferError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.audit_event import AuditAction, AuditEntityType
from stock_kernel.models.branch import Branch
from stock_kernel.models.product import Product
from stock_kernel.models.template import TransferTemplate, TransferTemplateItem
from stock_kernel.selectors.base import SortKey, paginate, parse_datetime
from stock_kernel.services.base import BaseService, snapshot

logger = get_logger("services.template")

COPY_SUFFIX = " (Copy)"


@dataclass(frozen=True)
class TemplateItemInput:
    product_id: UUID
    default_qty: int


def _template_snapshot(template: TransferTemplate) -> dict:
    data = snapshot(template)
    data["items"] = [
        {"product_id": i.product_id, "default_qty": i.default_qty} for i in template.items
    ]
    return data


class TemplateService(BaseService):
    def _check_branches(self, tenant_id: UUID, source_branch_id: UUID, destination_branch_id: UUID) -> None:
        if source_branch_id == destination_branch_id:
            raise SameBranchTransferError(str(source_branch_id))
        wanted = {source_branch_id, destination_branch_id}
        found = set(
            self.session.execute(
                select(Branch.id).where(Branch.tenant_id == tenant_id, Branch.id.in_(wanted))
            ).scalars()
        )
        for branch_id in (source_branch_id, destination_branch_id):
            if branch_id not in found:
                raise EntityNotFoundError("Branch", str(branch_id))

    def _build_items(self, tenant_id: UUID, items: list[TemplateItemInput]) -> list[TransferTemplateItem]:
        if not items:
            raise EmptyTransferError("Template")
        seen = set()
        for item in items:
            if item.default_qty <= 0:
                raise InvalidQuantityError("default_qty", item.default_qty, "> 0")
            if item.product_id in seen:
                raise ValidationError("Each product may appear only once in a template")
            seen.add(item.product_id)
        found = set(
            self.session.execute(
                select(Product.id).where(Product.tenant_id == tenant_id, Product.id.in_(seen))
            ).scalars()
        )
        for product_id in seen:
            if product_id not in found:
                raise EntityNotFoundError("Product", str(product_id))
        return [TransferTemplateItem(product_id=i.product_id, default_qty=i.default_qty) for i in items]

    def get(self, principal: Principal, template_id: UUID) -> TransferTemplate:
        return self._get_owned(TransferTemplate, template_id, principal.tenant_id, "Template")

    def create(
        self,
        principal: Principal,
        name: str,
        source_branch_id: UUID,
        destination_branch_id: UUID,
        items: list[TemplateItemInput],
        description: str | None = None,
    ) -> TransferTemplate:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Template name is required")
        self._check_branches(principal.tenant_id, source_branch_id, destination_branch_id)

        template = TransferTemplate(
            tenant_id=principal.tenant_id,
            name=name,
            description=description,
            source_branch_id=source_branch_id,
            destination_branch_id=destination_branch_id,
            created_by=principal.user_id,
            items=self._build_items(principal.tenant_id, items),
        )
        self.session.add(template)
        self.session.flush()

        self._audit(
            principal, AuditEntityType.TRANSFER_TEMPLATE, template.id, AuditAction.CREATE,
            entity_name=template.name, after=_template_snapshot(template),
        )
        logger.info("template_created", extra={"template_id": str(template.id)})
        return template

    def update(
        self,
        principal: Principal,
        template_id: UUID,
        name: str | None = None,
        description: str | None = None,
        source_branch_id: UUID | None = None,
        destination_branch_id: UUID | None = None,
        items: list[TemplateItemInput] | None = None,
    ) -> TransferTemplate:
        template = self.get(principal, template_id)
        before = _template_snapshot(template)

        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Template name is required")
            template.name = name
        if description is not None:
            template.description = description
        if source_branch_id is not None or destination_branch_id is not None:
            source = source_branch_id or template.source_branch_id
            destination = destination_branch_id or template.destination_branch_id
            self._check_branches(principal.tenant_id, source, destination)
            template.source_branch_id = source
            template.destination_branch_id = destination
        if items is not None:
            new_items = self._build_items(principal.tenant_id, items)
            # old lines must be gone before new ones reuse (template_id, product_id)
            template.items = []
            self.session.flush()
            template.items = new_items
        self.session.flush()

        self._audit(
            principal, AuditEntityType.TRANSFER_TEMPLATE, template.id, AuditAction.UPDATE,
            entity_name=template.name, before=before, after=_template_snapshot(template),
        )
        return template

    def duplicate(self, principal: Principal, template_id: UUID) -> TransferTemplate:
        source = self.get(principal, template_id)
        return self.create(
            principal,
            name=f"{source.name}{COPY_SUFFIX}",
            source_branch_id=source.source_branch_id,
            destination_branch_id=source.destination_branch_id,
            items=[TemplateItemInput(i.product_id, i.default_qty) for i in source.items],
            description=source.description,
        )

    def archive(self, principal: Principal, template_id: UUID) -> TransferTemplate:
        template = self.get(principal, template_id)
        if template.is_archived:
            raise AlreadyArchivedError("Template", str(template.id))

        before = _template_snapshot(template)
        template.is_archived = True
        template.archived_at = self._clock.now()
        self.session.flush()

        self._audit(
            principal, AuditEntityType.TRANSFER_TEMPLATE, template.id, AuditAction.DELETE,
            entity_name=template.name, before=before, after=_template_snapshot(template),
        )
        return template

    def restore(self, principal: Principal, template_id: UUID) -> TransferTemplate:
        template = self.get(principal, template_id)
        if not template.is_archived:
            raise NotArchivedError("Template", str(template.id))

        before = _template_snapshot(template)
        template.is_archived = False
        template.archived_at = None
        self.session.flush()

        self._audit(
            principal, AuditEntityType.TRANSFER_TEMPLATE, template.id, AuditAction.RESTORE,
            entity_name=template.name, before=before, after=_template_snapshot(template),
        )
        return template

    def list(
        self,
        principal: Principal,
        archived: ArchiveFilter = ArchiveFilter.ACTIVE_ONLY,
        q: str | None = None,
        source_branch_id: UUID | None = None,
        destination_branch_id: UUID | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page:
        stmt = select(TransferTemplate).where(TransferTemplate.tenant_id == principal.tenant_id)
        if archived == ArchiveFilter.ACTIVE_ONLY:
            stmt = stmt.where(TransferTemplate.is_archived.is_(False))
        elif archived == ArchiveFilter.ARCHIVED_ONLY:
            stmt = stmt.where(TransferTemplate.is_archived.is_(True))
        if q:
            pattern = f"%{q.strip()}%"
            stmt = stmt.where(
                or_(TransferTemplate.name.ilike(pattern), TransferTemplate.description.ilike(pattern))
            )
        if source_branch_id is not None:
            stmt = stmt.where(TransferTemplate.source_branch_id == source_branch_id)
        if destination_branch_id is not None:
            stmt = stmt.where(TransferTemplate.destination_branch_id == destination_branch_id)

        rows, has_next, next_cursor = paginate(
            self.session,
            stmt,
            [
                SortKey(TransferTemplate.created_at, lambda t: t.created_at, descending=True, parse=parse_datetime),
                SortKey(TransferTemplate.id, lambda t: t.id, descending=True, parse=UUID),
            ],
            limit,
            cursor,
        )
        return Page(
            items=tuple(rows),
            has_next_page=has_next,
            next_cursor=next_cursor,
            applied={
                "archived": archived.value,
                "q": q,
                "source_branch_id": source_branch_id,
                "destination_branch_id": destination_branch_id,
            },
        )

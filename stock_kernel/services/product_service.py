"""
ProductService -- the tenant product catalog.

Responsibility:
    Creates, updates, archives and restores products, and lists them with
    keyset pagination.

Architecture position:
    Kernel > Services.

Invariants enforced:
    - sku is unique per tenant (DuplicateSkuError, 409).
    - price_pence is an integer >= 0.
    - Archived products are hidden from stock operations but keep their
      history.
"""

from uuid import UUID

from sqlalchemy import or_, select

from stock_kernel.domain.pagination import ArchiveFilter, Page, SortDirection
from stock_kernel.domain.principal import Principal
from stock_kernel.exceptions import (
    AlreadyArchivedError,
    DuplicateSkuError,
    InvalidQuantityError,
    NotArchivedError,
    ValidationError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.audit_event import AuditAction, AuditEntityType
from stock_kernel.models.product import Product
from stock_kernel.selectors.base import SortKey, paginate, parse_datetime
from stock_kernel.services.base import BaseService, snapshot

logger = get_logger("services.product")

PRODUCT_SORT_FIELDS = {
    "name": (Product.name, lambda p: p.name, str),
    "sku": (Product.sku, lambda p: p.sku, str),
    "price_pence": (Product.price_pence, lambda p: p.price_pence, int),
    "created_at": (Product.created_at, lambda p: p.created_at, parse_datetime),
    "updated_at": (Product.updated_at, lambda p: p.updated_at, parse_datetime),
}


def _check_price(price_pence: int) -> None:
    if price_pence < 0:
        raise InvalidQuantityError("price_pence", price_pence, ">= 0")


class ProductService(BaseService):
    def _assert_sku_free(self, tenant_id: UUID, sku: str, exclude_id: UUID | None = None) -> None:
        stmt = select(Product.id).where(Product.tenant_id == tenant_id, Product.sku == sku)
        if exclude_id is not None:
            stmt = stmt.where(Product.id != exclude_id)
        if self.session.execute(stmt).first() is not None:
            raise DuplicateSkuError(sku)

    def get(self, principal: Principal, product_id: UUID) -> Product:
        return self._get_owned(Product, product_id, principal.tenant_id, "Product")

    def list(
        self,
        principal: Principal,
        archived: ArchiveFilter = ArchiveFilter.ACTIVE_ONLY,
        q: str | None = None,
        min_price_pence: int | None = None,
        max_price_pence: int | None = None,
        sort_by: str = "created_at",
        sort_dir: SortDirection = SortDirection.DESC,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> Page:
        if sort_by not in PRODUCT_SORT_FIELDS:
            raise ValidationError(
                f"sort_by must be one of: {', '.join(sorted(PRODUCT_SORT_FIELDS))}"
            )

        stmt = select(Product).where(Product.tenant_id == principal.tenant_id)
        if archived == ArchiveFilter.ACTIVE_ONLY:
            stmt = stmt.where(Product.is_archived.is_(False))
        elif archived == ArchiveFilter.ARCHIVED_ONLY:
            stmt = stmt.where(Product.is_archived.is_(True))
        if q:
            pattern = f"%{q.strip()}%"
            stmt = stmt.where(
                or_(Product.name.ilike(pattern), Product.sku.ilike(pattern), Product.barcode == q.strip())
            )
        if min_price_pence is not None:
            stmt = stmt.where(Product.price_pence >= min_price_pence)
        if max_price_pence is not None:
            stmt = stmt.where(Product.price_pence <= max_price_pence)

        column, getter, parse = PRODUCT_SORT_FIELDS[sort_by]
        descending = sort_dir == SortDirection.DESC
        rows, has_next, next_cursor = paginate(
            self.session,
            stmt,
            [
                SortKey(column, getter, descending=descending, parse=parse),
                SortKey(Product.id, lambda p: p.id, descending=descending, parse=UUID),
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
                "min_price_pence": min_price_pence,
                "max_price_pence": max_price_pence,
                "sort_by": sort_by,
                "sort_dir": sort_dir.value,
            },
        )

    def create(
        self,
        principal: Principal,
        sku: str,
        name: str,
        price_pence: int,
        barcode: str | None = None,
    ) -> Product:
        sku = (sku or "").strip()
        name = (name or "").strip()
        if not sku or not name:
            raise ValidationError("Product sku and name are required")
        _check_price(price_pence)
        self._assert_sku_free(principal.tenant_id, sku)

        product = Product(
            tenant_id=principal.tenant_id,
            sku=sku,
            name=name,
            price_pence=price_pence,
            barcode=barcode,
        )
        self.session.add(product)
        self.session.flush()

        self._audit(
            principal, AuditEntityType.PRODUCT, product.id, AuditAction.CREATE,
            entity_name=product.name, after=snapshot(product),
        )
        logger.info("product_created", extra={"product_id": str(product.id), "sku": sku})
        return product

    def update(
        self,
        principal: Principal,
        product_id: UUID,
        sku: str | None = None,
        name: str | None = None,
        price_pence: int | None = None,
        barcode: str | None = None,
    ) -> Product:
        product = self.get(principal, product_id)
        before = snapshot(product)

        if sku is not None:
            sku = sku.strip()
            if not sku:
                raise ValidationError("Product sku is required")
            self._assert_sku_free(principal.tenant_id, sku, exclude_id=product.id)
            product.sku = sku
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Product name is required")
            product.name = name
        if price_pence is not None:
            _check_price(price_pence)
            product.price_pence = price_pence
        if barcode is not None:
            product.barcode = barcode or None
        self.session.flush()

        self._audit(
            principal, AuditEntityType.PRODUCT, product.id, AuditAction.UPDATE,
            entity_name=product.name, before=before, after=snapshot(product),
        )
        return product

    def archive(self, principal: Principal, product_id: UUID) -> Product:
        product = self.get(principal, product_id)
        if product.is_archived:
            raise AlreadyArchivedError("Product", str(product.id))

        before = snapshot(product)
        product.is_archived = True
        product.archived_at = self._clock.now()
        self.session.flush()

        self._audit(
            principal, AuditEntityType.PRODUCT, product.id, AuditAction.DELETE,
            entity_name=product.name, before=before, after=snapshot(product),
        )
        return product

    def restore(self, principal: Principal, product_id: UUID) -> Product:
        product = self.get(principal, product_id)
        if not product.is_archived:
            raise NotArchivedError("Product", str(product.id))

        before = snapshot(product)
        product.is_archived = False
        product.archived_at = None
        self.session.flush()

        self._audit(
            principal, AuditEntityType.PRODUCT, product.id, AuditAction.RESTORE,
            entity_name=product.name, before=before, after=snapshot(product),
        )
        return product

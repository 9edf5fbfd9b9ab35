"""Business logic layer for VoltFlow ERP.

This module is the application-state boundary: it loads a tenant's records
through the Data Access Layer (DAL), hands them to the pure pricing, cart,
totals, ledger, and reporting functions, and writes the results back. Every
mutation goes to the in-memory workbook first; :func:`persist_context` then
saves the file in one atomic step.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from openpyxl.workbook import Workbook

from . import data_manager, log
from .cart import Cart
from .constants import (
    DEFAULT_PRODUCT_CATEGORIES,
    DEFAULT_UNITS,
    EXPECTED_SCHEMA_VERSION,
    EXPENSE_CATEGORIES,
    ContactType,
)
from .models import (
    BusinessRuleViolation,
    CatalogSettings,
    Contact,
    Expense,
    ImportFormatError,
    MissingReferenceError,
    Product,
    Transaction,
    ValidationError,
)
from .pricing import validate_pricing
from .stock_ledger import LedgerResult, apply_transaction
from .totals import build_transaction, generate_transaction_id


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)

    @property
    def company_id(self) -> str:
        return self.settings.company_id


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    return candidate if candidate is not None else datetime.now(UTC)


def _new_id(prefix: str) -> str:
    return f"{prefix}{uuid.uuid4().hex[:12].upper()}"


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    The business logic layer keeps in-memory caches keyed by domain area
    (products, contacts, transactions, expenses, settings). Buckets are plain
    dictionaries holding query results so repeated reads skip the workbook.

    Args:
        context (RuntimeContext): Runtime state carrying the shared cache
            dictionary.
        name (str): Logical bucket name to fetch or create.

    Returns:
        dict[str, Any]: Mutable mapping for the named bucket.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Missing buckets are ignored.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the product cache bucket on demand.

    Returns:
        dict[str, Any]: Bucket containing ``all`` products, ``active``
            products, and a ``by_id`` lookup dictionary.
    """

    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = list(data_manager.iter_products(context.workbook, context.company_id))
        bucket["all"] = all_products
        bucket["active"] = [product for product in all_products if product.is_active]
        bucket["by_id"] = {product.product_id: product for product in all_products}
        log.debug(
            "Populated products cache with %d entries (%d active)",
            len(all_products),
            len(bucket["active"]),
        )
    return bucket


def _ensure_contacts_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "contacts")
    if "all" not in bucket:
        all_contacts = list(data_manager.iter_contacts(context.workbook, context.company_id))
        bucket["all"] = all_contacts
        bucket["by_id"] = {contact.contact_id: contact for contact in all_contacts}
        log.debug("Populated contacts cache with %d entries", len(all_contacts))
    return bucket


def _ensure_transactions_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the transaction log cache bucket on demand.

    Transactions are immutable after creation, so the full list and a
    ``by_id`` mapping stay valid until the next commit.
    """

    bucket = _get_cache_bucket(context, "transactions")
    if "all" not in bucket:
        all_transactions = list(data_manager.iter_transactions(context.workbook, context.company_id))
        bucket["all"] = all_transactions
        bucket["by_id"] = {transaction.transaction_id: transaction for transaction in all_transactions}
        bucket["referenced_products"] = {
            item.product_id
            for transaction in all_transactions
            for item in transaction.items
            if item.product_id
        }
        log.debug("Populated transactions cache with %d entries", len(all_transactions))
    return bucket


def _ensure_expenses_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "expenses")
    if "all" not in bucket:
        all_expenses = list(data_manager.iter_expenses(context.workbook, context.company_id))
        bucket["all"] = all_expenses
        bucket["by_id"] = {expense.expense_id: expense for expense in all_expenses}
        log.debug("Populated expenses cache with %d entries", len(all_expenses))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Resolves ``config.ini``, parses it with relative paths anchored at the
    config file's directory, and opens the workbook.

    Args:
        config_path (Path | None): Optional override path for the
            configuration file. When omitted the data layer searches upward
            from the current working directory.

    Returns:
        RuntimeContext: Context with an empty cache store.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """

    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info(
        "Loaded runtime context for company '%s' from workbook '%s'",
        settings.company_id,
        settings.data_file,
    )
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------


def list_products(context: RuntimeContext, *, include_inactive: bool = False) -> List[Product]:
    """Return the tenant's products in sheet order.

    Archived products (``is_active`` false) are hidden unless
    ``include_inactive`` is set.
    """

    cache = _ensure_products_cache(context)
    source = cache["all"] if include_inactive else cache["active"]
    return list(source)


def get_product(context: RuntimeContext, product_id: str) -> Product:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If the tenant has no product ``product_id``.
    """

    cache = _ensure_products_cache(context)
    try:
        return cache["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def upsert_product(context: RuntimeContext, product: Product) -> Product:
    """Insert a new product or overwrite an existing one.

    A product with an empty ``product_id`` is new and receives a generated
    identifier. Cost fields must be non-negative and the name non-empty.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        product (Product): Record to store.

    Returns:
        Product: The stored record, carrying its final identifier.

    Raises:
        ValidationError: On a blank name or a negative cost field.
    """

    if not product.name.strip():
        log.error("Product rejected: name is empty")
        raise ValidationError("Product name is required")
    validate_pricing(product.pricing)

    if not product.product_id:
        product = replace(product, product_id=_new_id("P"))
    created = data_manager.upsert_product(context.workbook, context.company_id, product)
    _invalidate_cache(context, "products")
    log.info(
        "%s product '%s' (%s)",
        "Created" if created else "Updated",
        product.product_id,
        product.sku,
    )
    return product


def delete_product(context: RuntimeContext, product_id: str) -> bool:
    """Remove a product, or archive it when transactions reference it.

    Committed transactions must keep resolving their product ids, so a
    referenced product is only flagged inactive.

    Returns:
        bool: ``True`` when the product was archived, ``False`` when removed.

    Raises:
        MissingReferenceError: If the product does not exist.
    """

    product = get_product(context, product_id)
    referenced = product_id in _ensure_transactions_cache(context)["referenced_products"]
    if referenced:
        data_manager.upsert_product(context.workbook, context.company_id, replace(product, is_active=False))
        log.info("Archived product '%s' referenced by existing transactions", product_id)
    else:
        data_manager.delete_product(context.workbook, context.company_id, product_id)
        log.info("Deleted product '%s'", product_id)
    _invalidate_cache(context, "products")
    return referenced


def import_products(context: RuntimeContext, drafts: Sequence[Product]) -> List[Product]:
    """Store a parsed import batch, all or nothing.

    Every draft is validated before the first row is written. Drafts whose
    SKU matches an existing product update that product in place (keeping its
    identifier); the rest are created.

    Raises:
        ImportFormatError: If any draft fails validation. The workbook is left
            untouched.
    """

    for position, draft in enumerate(drafts, start=1):
        try:
            if not draft.name.strip():
                raise ValidationError("Product name is required")
            validate_pricing(draft.pricing)
        except ValidationError as exc:
            log.error("Import rejected at record %d: %s", position, exc)
            raise ImportFormatError(f"Record {position}: {exc}") from exc

    by_sku = {product.sku: product for product in list_products(context, include_inactive=True)}
    stored: List[Product] = []
    for draft in drafts:
        existing = by_sku.get(draft.sku)
        if existing is not None:
            draft = replace(draft, product_id=existing.product_id)
        stored_product = upsert_product(context, draft)
        by_sku[stored_product.sku] = stored_product
        stored.append(stored_product)

    log.info("Imported %d products", len(stored))
    return stored


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


def list_contacts(context: RuntimeContext, contact_type: Optional[ContactType] = None) -> List[Contact]:
    contacts = _ensure_contacts_cache(context)["all"]
    if contact_type is None:
        return list(contacts)
    return [contact for contact in contacts if contact.contact_type is ContactType(contact_type)]


def get_contact(context: RuntimeContext, contact_id: str) -> Contact:
    """Resolve a contact by identifier.

    Raises:
        MissingReferenceError: If the tenant has no contact ``contact_id``.
    """

    try:
        return _ensure_contacts_cache(context)["by_id"][contact_id]
    except KeyError as exc:
        log.warning("Contact lookup failed for id '%s'", contact_id)
        raise MissingReferenceError(f"Unknown contact id: {contact_id}") from exc


def upsert_contact(context: RuntimeContext, contact: Contact) -> Contact:
    if not contact.name.strip():
        log.error("Contact rejected: name is empty")
        raise ValidationError("Contact name is required")
    if not contact.contact_id:
        contact = replace(contact, contact_id=_new_id("C"))
    created = data_manager.upsert_contact(context.workbook, context.company_id, contact)
    _invalidate_cache(context, "contacts")
    log.info("%s contact '%s' (%s)", "Created" if created else "Updated", contact.contact_id, contact.name)
    return contact


def delete_contact(context: RuntimeContext, contact_id: str) -> None:
    """Remove a contact. Past transactions keep their copied contact name.

    Raises:
        MissingReferenceError: If the contact does not exist.
    """

    get_contact(context, contact_id)
    data_manager.delete_contact(context.workbook, context.company_id, contact_id)
    _invalidate_cache(context, "contacts")
    log.info("Deleted contact '%s'", contact_id)


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def list_transactions(context: RuntimeContext) -> List[Transaction]:
    """Return a copy of the tenant's transaction log in workbook order."""

    return list(_ensure_transactions_cache(context)["all"])


def get_transaction(context: RuntimeContext, transaction_id: str) -> Transaction:
    """Retrieve a transaction by its identifier.

    Raises:
        MissingReferenceError: If the log lacks the supplied identifier.
    """

    cache = _ensure_transactions_cache(context)
    try:
        return cache["by_id"][transaction_id]
    except KeyError as exc:
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise MissingReferenceError(f"Unknown transaction id: {transaction_id}") from exc


def commit_transaction(context: RuntimeContext, transaction: Transaction) -> LedgerResult:
    """Append ``transaction`` to the log and apply its stock effect.

    The transaction header, its line items, and every resulting stock update
    are written to the in-memory workbook together; nothing reaches disk until
    :func:`persist_context`. Lines referencing products the tenant does not
    have are skipped by the ledger and reported in the result.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        transaction (Transaction): Fully built transaction.

    Returns:
        LedgerResult: The catalog after the stock effect, plus the updated and
            missing product identifiers.

    Raises:
        BusinessRuleViolation: If a transaction with the same identifier was
            already committed.
    """

    if transaction.transaction_id in _ensure_transactions_cache(context)["by_id"]:
        log.error("Duplicate transaction id '%s' rejected", transaction.transaction_id)
        raise BusinessRuleViolation(f"Transaction '{transaction.transaction_id}' was already committed")

    result = apply_transaction(list_products(context, include_inactive=True), transaction)
    data_manager.append_transaction(context.workbook, context.company_id, transaction)
    new_stock = {product.product_id: product.stock for product in result.products}
    for product_id in result.updated_ids:
        data_manager.update_product_stock(context.workbook, context.company_id, product_id, new_stock[product_id])
    _invalidate_cache(context, "transactions", "products")
    log.info(
        "Committed %s transaction '%s' (%d lines, total=%s%s)",
        transaction.transaction_type.value,
        transaction.transaction_id,
        len(transaction.items),
        transaction.total_amount,
        ", return" if transaction.is_return else "",
    )
    return result


def add_to_cart(
    context: RuntimeContext,
    cart: Cart,
    product_id: str,
    quantity: Decimal,
    discount: Decimal = Decimal("0"),
) -> None:
    """Queue a catalog product on ``cart`` using its current stored state.

    Raises:
        MissingReferenceError: If the product is unknown.
        BusinessRuleViolation: If the product is archived.
        ValidationError: On quantity, discount, or stock problems.
    """

    product = get_product(context, product_id)
    if not product.is_active:
        log.warning("Attempted to queue archived product '%s'", product_id)
        raise BusinessRuleViolation(f"Product '{product_id}' is archived")
    cart.add_product_line(product, quantity, discount)


def checkout(
    context: RuntimeContext,
    cart: Cart,
    contact_id: Optional[str],
    *,
    user: str,
    is_return: bool = False,
    timestamp: Optional[datetime] = None,
) -> Transaction:
    """Build a transaction from ``cart``, commit it, and empty the cart.

    Raises:
        ValidationError: If the cart is empty or no counterparty is given.
        MissingReferenceError: If ``contact_id`` is unknown.
    """

    contact = get_contact(context, contact_id) if contact_id else None
    transaction = build_transaction(
        cart,
        contact,
        user=user,
        is_return=is_return,
        timestamp=_resolve_timestamp(timestamp),
    )
    commit_transaction(context, transaction)
    cart.clear()
    return transaction


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------


def list_expenses(context: RuntimeContext) -> List[Expense]:
    return list(_ensure_expenses_cache(context)["all"])


def record_expense(
    context: RuntimeContext,
    *,
    category: str,
    amount: Decimal,
    user: str,
    description: str = "",
    timestamp: Optional[datetime] = None,
) -> Expense:
    """Append an operating expense.

    Raises:
        ValidationError: If ``category`` is unknown or ``amount`` is not
            positive.
    """

    if category not in EXPENSE_CATEGORIES:
        log.error("Expense rejected: unknown category '%s'", category)
        raise ValidationError(f"Unknown expense category: {category}")
    if amount <= 0:
        log.error("Expense rejected: non-positive amount %s", amount)
        raise ValidationError("Expense amount must be greater than zero")

    moment = _resolve_timestamp(timestamp)
    expense = Expense(
        expense_id=generate_transaction_id(prefix="E", when=moment),
        company_id=context.company_id,
        category=category,
        amount=amount,
        description=description,
        timestamp_iso=moment.isoformat(),
        user_name=user,
    )
    data_manager.append_expense(context.workbook, expense)
    _invalidate_cache(context, "expenses")
    log.info("Recorded expense '%s' (%s, %s)", expense.expense_id, category, amount)
    return expense


def delete_expense(context: RuntimeContext, expense_id: str) -> None:
    """Remove an expense entry.

    Raises:
        MissingReferenceError: If the expense does not exist.
    """

    if expense_id not in _ensure_expenses_cache(context)["by_id"]:
        log.warning("Expense lookup failed for id '%s'", expense_id)
        raise MissingReferenceError(f"Unknown expense id: {expense_id}")
    data_manager.delete_expense(context.workbook, context.company_id, expense_id)
    _invalidate_cache(context, "expenses")
    log.info("Deleted expense '%s'", expense_id)


# ---------------------------------------------------------------------------
# Catalog settings
# ---------------------------------------------------------------------------


def get_catalog_settings(context: RuntimeContext) -> CatalogSettings:
    """Return the tenant's categories and units, falling back to the defaults."""

    bucket = _get_cache_bucket(context, "settings")
    if "catalog" not in bucket:
        stored = data_manager.read_catalog_settings(context.workbook, context.company_id)
        bucket["catalog"] = CatalogSettings(
            categories=stored.categories or DEFAULT_PRODUCT_CATEGORIES,
            units=stored.units or DEFAULT_UNITS,
        )
    return bucket["catalog"]


def _clean_names(kind: str, names: Iterable[str]) -> tuple[str, ...]:
    cleaned: List[str] = []
    seen: set[str] = set()
    for raw in names:
        name = raw.strip()
        if not name:
            raise ValidationError(f"Empty {kind} name")
        key = name.casefold()
        if key in seen:
            log.error("Catalog update rejected: duplicate %s '%s'", kind, name)
            raise ValidationError(f"Duplicate {kind}: {name}")
        seen.add(key)
        cleaned.append(name)
    return tuple(cleaned)


def update_catalog_settings(
    context: RuntimeContext,
    *,
    categories: Optional[Iterable[str]] = None,
    units: Optional[Iterable[str]] = None,
) -> CatalogSettings:
    """Replace the tenant's category and/or unit lists.

    Omitted lists keep their current values. Names are compared
    case-insensitively.

    Raises:
        ValidationError: On an empty or duplicate name. Nothing is written.
    """

    current = get_catalog_settings(context)
    updated = CatalogSettings(
        categories=current.categories if categories is None else _clean_names("category", categories),
        units=current.units if units is None else _clean_names("unit", units),
    )
    data_manager.write_catalog_settings(context.workbook, context.company_id, updated)
    _invalidate_cache(context, "settings")
    log.info(
        "Updated catalog settings (%d categories, %d units)",
        len(updated.categories),
        len(updated.units),
    )
    return updated


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def persist_context(context: RuntimeContext) -> None:
    """Persist in-memory workbook changes to the configured file atomically."""

    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context with a newly opened workbook and an
            empty cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """

    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)

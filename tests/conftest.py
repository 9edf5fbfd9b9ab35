"""Shared pytest fixtures and utilities for VoltFlow ERP tests."""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

from voltflow_erp import constants, core_logic, data_manager  # noqa: E402
from voltflow_erp.models import Contact, Pricing, Product  # noqa: E402
from setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_COMPANY_ID = "ACME"
DEFAULT_CUSTOMER_ID = "C-RETAIL"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "CompanyName = {company_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "CompanyID = {company_id}\n"
    "DefaultCustomer = {default_customer_id}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    company_id: str
    default_customer_id: str
    schema_version: str
    company_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        company_id: str = DEFAULT_COMPANY_ID,
        default_customer_id: str | None = DEFAULT_CUSTOMER_ID,
        filename: str = "master_workbook.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(
            workbook_path,
            company_id=company_id,
            default_customer_id=default_customer_id,
            overwrite=True,
        )
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    unique_dir = f"workbook_{uuid.uuid4().hex}"
    return workbook_factory(subdir=unique_dir)


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        company_name: str = "Acme Electric",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        company_id: str = DEFAULT_COMPANY_ID,
        default_customer_id: str = DEFAULT_CUSTOMER_ID,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(
            subdir=f"bundle_{bundle_id}",
            company_id=company_id,
            default_customer_id=default_customer_id,
        )
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                company_name=company_name,
                schema_version=schema_version,
                company_id=company_id,
                default_customer_id=default_customer_id,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            company_id=company_id,
            default_customer_id=default_customer_id,
            schema_version=schema_version,
            company_name=company_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Domain record factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_product() -> Callable[..., Product]:
    """Build products with sensible defaults; override any field by keyword."""

    def _make(
        product_id: str = "P1",
        *,
        sku: str | None = None,
        name: str = "LED Panel 60x60",
        category: str = "Lighting",
        unit: str = "Piece",
        stock: str = "20",
        critical_threshold: str = "5",
        purchase_price: str = "10",
        exchange_rate: str = "1",
        vat_rate: str = "0.20",
        other_expenses: str = "0",
        selling_price: str = "100",
        is_active: bool = True,
    ) -> Product:
        return Product(
            product_id=product_id,
            sku=sku if sku is not None else f"SKU-{product_id}",
            name=name,
            category=category,
            unit=unit,
            stock=Decimal(stock),
            critical_threshold=Decimal(critical_threshold),
            pricing=Pricing(
                purchase_price=Decimal(purchase_price),
                exchange_rate=Decimal(exchange_rate),
                vat_rate=Decimal(vat_rate),
                other_expenses=Decimal(other_expenses),
            ),
            selling_price=Decimal(selling_price),
            is_active=is_active,
        )

    return _make


@pytest.fixture
def customer() -> Contact:
    return Contact(contact_id="C1", name="Bright Homes Ltd", contact_type=constants.ContactType.CUSTOMER)


@pytest.fixture
def supplier() -> Contact:
    return Contact(contact_id="S1", name="Cable Wholesale", contact_type=constants.ContactType.SUPPLIER)


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "master_workbook.xlsx",
        company_name="Acme Electric",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        company_id=DEFAULT_COMPANY_ID,
        default_customer_id=DEFAULT_CUSTOMER_ID,
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply

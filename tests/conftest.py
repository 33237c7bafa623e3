"""Shared pytest fixtures and utilities for pharmacy ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

for candidate in (SRC_DIR, PROJECT_ROOT):
    candidate_str = str(candidate)
    if candidate_str not in sys.path:
        sys.path.insert(0, candidate_str)

import pharmacy_ledger  # noqa: E402
from pharmacy_ledger import cli, constants, core_logic, data_manager  # noqa: E402
from setup_excel import create_pharmacy_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "PharmacyName = {pharmacy_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Notifications]\n"
    "TTLSeconds = {ttl_seconds}\n\n"
    "[Logging]\n"
    "Level = {log_level}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    pharmacy_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(autouse=True)
def _restore_log_level() -> Iterator[None]:
    """Put the package logger back to its default level after each test."""

    yield
    pharmacy_ledger.set_log_level(pharmacy_ledger.DEFAULT_LOG_LEVEL)


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized ledger workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "pharmacy_ledger.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_pharmacy_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def ledger_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh ledger workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        pharmacy_name: str = "Test Pharmacy",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        ttl_seconds: int = constants.DEFAULT_NOTIFICATION_TTL_SECONDS,
        log_level: str = "INFO",
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}")
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                pharmacy_name=pharmacy_name,
                schema_version=schema_version,
                ttl_seconds=ttl_seconds,
                log_level=log_level,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            pharmacy_name=pharmacy_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def store(ledger_workbook_path: Path) -> data_manager.WorkbookStore:
    """Open a store over a fresh workbook."""

    return data_manager.WorkbookStore.open(ledger_workbook_path)


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# Record fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def product_factory() -> Callable[..., data_manager.Product]:
    """Build product records with sensible defaults."""

    def _make_product(
        product_id: str = "P1",
        *,
        name: str = "Paracetamol 500mg",
        category: str = "Tablet/Medicine",
        buy_price: str = "60",
        sell_price: str = "100",
        stock: int = 50,
        expiry_date: str = "2030-01-31",
    ) -> data_manager.Product:
        return data_manager.Product(
            product_id=product_id,
            name=name,
            category=category,
            batch="B-001",
            expiry_date=expiry_date,
            buy_price=Decimal(buy_price),
            sell_price=Decimal(sell_price),
            stock=stock,
            location="Rack A",
        )

    return _make_product


@pytest.fixture
def seeded_context(
    runtime_context: core_logic.RuntimeContext,
    product_factory: Callable[..., data_manager.Product],
) -> core_logic.RuntimeContext:
    """Runtime context whose catalogue holds two products.

    ``P1`` sells at 100 (cost 60) with 50 units; ``P2`` sells at 10 (cost 4)
    with 20 units.
    """

    core_logic.add_product(runtime_context, product_factory("P1"))
    core_logic.add_product(
        runtime_context,
        product_factory("P2", name="Cough Syrup", category="Syrup", buy_price="4", sell_price="10", stock=20),
    )
    return runtime_context


@pytest.fixture
def fail_saves(monkeypatch: pytest.MonkeyPatch) -> Callable[[], None]:
    """Make every subsequent workbook save raise ``OSError``."""

    def _apply() -> None:
        def _broken_save(workbook, destination):
            raise OSError("disk full")

        monkeypatch.setattr(data_manager, "save_workbook", _broken_save)

    return _apply


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="pharmacy-cli", description="Pharmacy CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


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

"""Tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
from decimal import Decimal
from unittest.mock import Mock

import pytest

from pharmacy_ledger import cli, core_logic
from pharmacy_ledger.constants import DiscountType


WRITE_COMMANDS = {
    "add-product",
    "delete-product",
    "add-category",
    "adjust-stock",
    "sale",
    "edit-sale",
    "delete-sale",
}

READ_COMMANDS = {
    "stock",
    "sales",
    "categories",
    "dashboard",
}


def _run(config_file, *argv):
    return cli.main(["--config", str(config_file), *argv])


def _add_aspirin(config_file, stock="30"):
    return _run(
        config_file,
        "add-product",
        "--product-id",
        "P1",
        "--name",
        "Aspirin",
        "--buy-price",
        "2",
        "--sell-price",
        "5",
        "--stock",
        stock,
    )


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    """build_parser should set user-facing program metadata."""

    parser = cli.build_parser()
    assert parser.prog == "pharmacy-cli"
    assert "Pharmacy" in (parser.description or "")


def test_configure_subcommands_registers_every_command(cli_parser):
    """configure_subcommands should wire all read and write sub-commands."""

    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == WRITE_COMMANDS | READ_COMMANDS


def test_register_sale_command_configures_arguments(subparsers_action):
    """The sale parser should accept repeated items and bill options."""

    spec = cli.register_sale_command(subparsers_action)
    parser = spec.register(subparsers_action)

    args = parser.parse_args(["--item", "P1:2", "--item", "P2:1:FLAT:3", "--tax", "--discount", "5"])

    assert [item.product_id for item in args.items] == ["P1", "P2"]
    assert args.items[1].discount_type is DiscountType.FLAT
    assert args.tax is True
    assert args.discount == "5"


def test_register_sale_command_requires_items(subparsers_action):
    """A sale without any item should be refused by argparse."""

    parser = cli.register_sale_command(subparsers_action).register(subparsers_action)

    with pytest.raises(SystemExit):
        parser.parse_args([])


def test_build_command_table_indexes_specs(command_spec_iterable):
    """build_command_table should map command names to their specs."""

    table = cli.build_command_table(command_spec_iterable)

    assert list(table) == ["alpha", "beta", "gamma"]


def test_build_command_table_detects_duplicate_commands(command_spec_iterable):
    """build_command_table should reject duplicate command names."""

    with pytest.raises(ValueError, match="Duplicate"):
        cli.build_command_table([*command_spec_iterable, command_spec_iterable[0]])


def test_dispatch_command_invokes_executor(runtime_context):
    """dispatch_command should call the executor registered for the command."""

    execute = Mock(return_value=0)
    spec = cli.CommandSpec("ping", "help", Mock(), execute)
    args = argparse.Namespace(command="ping")

    assert cli.dispatch_command(runtime_context, args, {"ping": spec}) == 0
    execute.assert_called_once_with(runtime_context, args)


def test_dispatch_command_handles_unknown_commands(runtime_context):
    """dispatch_command should raise for commands missing from the table."""

    with pytest.raises(KeyError):
        cli.dispatch_command(runtime_context, argparse.Namespace(command="nope"), {})


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


def test_parse_item_spec_reads_quantity_and_discount():
    """parse_item_spec should accept the optional discount suffix."""

    assert cli.parse_item_spec("P1:2") == cli.ItemSpec("P1", 2)
    assert cli.parse_item_spec("P1:2:flat:5") == cli.ItemSpec("P1", 2, DiscountType.FLAT, Decimal("5"))


@pytest.mark.parametrize("raw", ["P1", "P1:x", "P1:1:BOGUS:2", "P1:1:FLAT"])
def test_parse_item_spec_rejects_malformed_items(raw):
    """parse_item_spec should turn malformed values into argparse errors."""

    with pytest.raises(argparse.ArgumentTypeError):
        cli.parse_item_spec(raw)


def test_translate_sale_builds_command(seeded_context):
    """translate_sale should snapshot products and carry bill options."""

    args = argparse.Namespace(
        items=[cli.ItemSpec("P1", 2, DiscountType.PERCENT, Decimal("10")), cli.ItemSpec("P1", 1)],
        tax=True,
        discount="5",
        customer_name="Meera",
        customer_email=None,
        customer_mobile=None,
    )

    command = cli.translate_sale(seeded_context, args)

    assert len(command.cart) == 1
    assert command.cart[0].quantity == 3
    assert command.cart[0].item_discount_value == Decimal("10")
    assert command.tax_enabled is True
    assert command.customer.name == "Meera"


def test_translate_cart_applies_explicit_zero_discount(seeded_context):
    """A later ``:FLAT:0`` suffix should replace an earlier discount on the same product."""

    items = [
        cli.ItemSpec("P1", 1, DiscountType.PERCENT, Decimal("10")),
        cli.ItemSpec("P1", 1, DiscountType.FLAT, Decimal("0")),
    ]

    cart = cli.translate_cart(seeded_context, items)

    assert len(cart) == 1
    assert cart[0].quantity == 2
    assert cart[0].item_discount_type is DiscountType.FLAT
    assert cart[0].item_discount_value == Decimal("0")


def test_translate_edit_sale_keeps_discount_without_suffix(seeded_context):
    """Items without a discount suffix should keep the stored line discount."""

    cart = cli.translate_cart(seeded_context, [cli.ItemSpec("P1", 2, DiscountType.FLAT, Decimal("5"))])
    sale = core_logic.process_sale(seeded_context, core_logic.SaleCommand(cart=cart)).sale
    args = argparse.Namespace(
        sale_id=sale.sale_id,
        items=[cli.ItemSpec("P1", 3), cli.ItemSpec("P2", 1)],
        discount=None,
    )

    edited = cli.translate_edit_sale(seeded_context, args)

    assert [(line.product_id, line.quantity) for line in edited.items] == [("P1", 3), ("P2", 1)]
    assert edited.items[0].item_discount_type is DiscountType.FLAT
    assert edited.items[0].item_discount_value == Decimal("5")
    assert edited.items[1].item_discount_value == Decimal("0")


def test_translate_sale_enforces_available_stock(seeded_context):
    """translate_sale should reject quantities beyond current stock."""

    args = argparse.Namespace(
        items=[cli.ItemSpec("P2", 21)],
        tax=False,
        discount="0",
        customer_name=None,
        customer_email=None,
        customer_mobile=None,
    )

    with pytest.raises(core_logic.ValidationError):
        cli.translate_sale(seeded_context, args)


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (core_logic.ValidationError("bad quantity"), cli.EXIT_BUSINESS_RULE),
        (core_logic.MissingReferenceError("Unknown product id: P9"), cli.EXIT_BUSINESS_RULE),
        (FileNotFoundError("config.ini"), cli.EXIT_MISSING_FILE),
        (RuntimeError("schema"), cli.EXIT_ERROR),
    ],
)
def test_handle_cli_error_returns_exit_code(error, expected, caplog):
    """handle_cli_error should map exceptions to exit codes and log them."""

    with caplog.at_level("ERROR", logger="pharmacy_ledger"):
        assert cli.handle_cli_error(error) == expected

    assert str(error) in caplog.text


# ---------------------------------------------------------------------------
# End-to-end
# ---------------------------------------------------------------------------


def test_main_records_sale_and_reports_stock(config_file, capsys):
    """main should add a product, sell it and show the reduced stock."""

    assert _add_aspirin(config_file) == cli.EXIT_OK
    assert _run(config_file, "sale", "--item", "P1:2:PERCENT:10") == cli.EXIT_OK
    sale_output = capsys.readouterr().out.strip().splitlines()[-1]
    assert sale_output.endswith("\t9.00")

    assert _run(config_file, "stock") == cli.EXIT_OK
    assert "P1\tAspirin\t28" in capsys.readouterr().out


def test_main_edits_and_deletes_sale(config_file, capsys):
    """edit-sale and delete-sale should reconcile stock through the BLL."""

    _add_aspirin(config_file)
    _run(config_file, "sale", "--item", "P1:3")
    sale_id = capsys.readouterr().out.strip().splitlines()[-1].split("\t")[0]

    assert _run(config_file, "edit-sale", "--sale-id", sale_id, "--item", "P1:1") == cli.EXIT_OK
    _run(config_file, "stock")
    assert "P1\tAspirin\t29" in capsys.readouterr().out

    assert _run(config_file, "delete-sale", "--sale-id", sale_id) == cli.EXIT_OK
    _run(config_file, "stock")
    assert "P1\tAspirin\t30" in capsys.readouterr().out


def test_main_reports_categories_and_dashboard(config_file, capsys):
    """Read commands should print categories and the dashboard figures."""

    assert _run(config_file, "add-category", "--name", "Ointment") == cli.EXIT_OK
    assert _run(config_file, "categories") == cli.EXIT_OK
    assert capsys.readouterr().out.strip().splitlines()[-1] == "Ointment"

    _add_aspirin(config_file, stock="4")
    assert _run(config_file, "dashboard") == cli.EXIT_OK
    output = capsys.readouterr().out
    assert "Revenue\t0.00" in output
    assert "Low stock\tAspirin" in output


def test_main_returns_not_committed_exit_code(config_file, capsys):
    """Operations that resolve without committing should exit with code 4."""

    assert _run(config_file, "delete-sale", "--sale-id", "S-missing") == cli.EXIT_NOT_COMMITTED
    assert _run(config_file, "adjust-stock", "--product-id", "P404", "--delta", "3") == cli.EXIT_NOT_COMMITTED
    assert "NOT_FOUND" in capsys.readouterr().err


def test_main_maps_business_rule_errors(config_file):
    """Unknown products on a sale should exit with the business-rule code."""

    assert _run(config_file, "sale", "--item", "P404:1") == cli.EXIT_BUSINESS_RULE


def test_main_maps_missing_config(tmp_path):
    """A missing configuration file should exit with the missing-file code."""

    assert cli.main(["--config", str(tmp_path / "missing.ini"), "stock"]) == cli.EXIT_MISSING_FILE

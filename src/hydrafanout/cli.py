"""
hydrafanout/cli.py

Command line tools that work without a network connection:

    hydrafanout allocate members.csv --threshold 100000
    hydrafanout plan shares.csv --balance 12.5
    hydrafanout verify-export distribution_details_2024-01-01T00-00-00Z.csv
"""

import csv
import json
import logging
from decimal import Decimal, InvalidOperation
from typing import List, Tuple

import click

from .blockchain.program import (
    AtomicOperation,
    MemberVoucher,
    OperationKind,
    expected_payout,
    sort_vouchers,
)
from .config import (
    BATCHES_PER_SIGNING,
    DEFAULT_TOTAL_SHARES,
    MEMBERS_PER_BATCH,
    NATIVE_DECIMALS,
)
from .errors import FanoutError
from .protocol.ledger import DistributionLedger, parse_records
from .protocol.planner import plan_sessions
from .protocol.shares import allocate_shares, total_share_units

logger = logging.getLogger("hydrafanout.cli")


def _read_pairs(path: str, value_name: str) -> List[Tuple[str, Decimal]]:
    """Read `address,<value>` rows; a header row is skipped."""
    pairs = []
    with open(path, newline="") as f:
        for line_no, row in enumerate(csv.reader(f), start=1):
            if not row or not row[0].strip():
                continue
            if len(row) < 2:
                raise click.ClickException(f"{path}:{line_no}: expected address,{value_name}")
            address, value = row[0].strip(), row[1].strip()
            try:
                pairs.append((address, Decimal(value)))
            except InvalidOperation:
                if line_no == 1:
                    continue
                raise click.ClickException(f"{path}:{line_no}: invalid {value_name} {value!r}")
    return pairs


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Log progress to stderr")
def main(verbose):
    """Plan and audit pooled-wallet distributions."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.argument("members_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--threshold", default="0", show_default=True, help="Minimum balance for a share")
@click.option("--total", default=str(DEFAULT_TOTAL_SHARES), show_default=True, help="Share units to split")
@click.option("--precision", default=0, show_default=True, help="Fractional digits per share")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of CSV")
def allocate(members_file, threshold, total, precision, as_json):
    """Allocate shares from an address,balance CSV file."""
    members = _read_pairs(members_file, "balance")
    try:
        shares = allocate_shares(members, threshold_min=threshold, total=total, precision=precision)
    except FanoutError as e:
        raise click.ClickException(str(e))

    if as_json:
        click.echo(json.dumps([s.to_dict() for s in shares], indent=2))
        return

    click.echo("address,share_units")
    for s in shares:
        click.echo(f"{s.address},{s.share_units}")
    if total_share_units(shares) == 0:
        click.echo("No member is eligible for a share", err=True)


@main.command()
@click.argument("shares_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--balance", default="0", show_default=True, help="Wallet balance to distribute")
@click.option("--total", default=str(DEFAULT_TOTAL_SHARES), show_default=True, help="Wallet total shares")
@click.option("--batch-size", default=MEMBERS_PER_BATCH, show_default=True, help="Members per transaction")
@click.option("--batches-per-session", default=BATCHES_PER_SIGNING, show_default=True,
              help="Transactions per signing prompt")
@click.option("--decimals", default=NATIVE_DECIMALS, show_default=True, help="Amount decimals")
def plan(shares_file, balance, total, batch_size, batches_per_session, decimals):
    """Show how a distribute-to-all run would be batched."""
    vouchers = [
        MemberVoucher(member_address=address, share_units=units)
        for address, units in _read_pairs(shares_file, "share_units")
    ]
    try:
        balance, total = Decimal(balance), Decimal(total)
    except InvalidOperation:
        raise click.ClickException("balance and total must be numbers")

    operations = [
        AtomicOperation(
            kind=OperationKind.PAYOUT,
            member=v.member_address,
            share_units=v.share_units,
            expected_amount=expected_payout(balance, v.share_units, total, decimals),
        )
        for v in sort_vouchers(vouchers)
    ]
    try:
        sessions = plan_sessions(operations, batch_size, batches_per_session)
    except FanoutError as e:
        raise click.ClickException(str(e))

    click.echo(json.dumps({
        'num_members': len(operations),
        'num_batches': sum(len(s.batches) for s in sessions),
        'sessions': [s.to_dict() for s in sessions],
    }, indent=2))


@main.command("verify-export")
@click.argument("export_file", type=click.Path(exists=True, dir_okay=False))
def verify_export(export_file):
    """Check a distribution export and print its summary."""
    with open(export_file, newline="") as f:
        text = f.read()
    try:
        records = parse_records(text)
    except FanoutError as e:
        raise click.ClickException(str(e))

    ledger = DistributionLedger()
    for record in records:
        if not ledger.record(record):
            raise click.ClickException(f"Duplicate record for {record.member_address}")

    summary = ledger.to_dict()
    del summary['records']
    click.echo(json.dumps(summary, indent=2))


if __name__ == "__main__":
    main()

"""
Tests for hydrafanout/cli.py

Tests the allocate, plan and verify-export commands with click's CliRunner.
"""

import json
import pytest
from click.testing import CliRunner
from decimal import Decimal

from hydrafanout.cli import main
from hydrafanout.protocol.ledger import DistributionRecord, serialize_records


@pytest.fixture
def runner():
    return CliRunner()


def write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text)
    return str(path)


class TestAllocateCommand:
    """Tests for `hydrafanout allocate`."""

    def test_allocate_with_threshold(self, runner, tmp_path, addresses):
        path = write(tmp_path, "members.csv", "address,balance\n" + "".join(
            f"{a},{b}\n" for a, b in zip(addresses[:3], [200000, 50000, 150000])
        ))
        result = runner.invoke(main, ["allocate", path, "--threshold", "100000"])

        assert result.exit_code == 0, result.output
        lines = [l for l in result.output.splitlines() if l.startswith(("address,", "Mbr"))]
        assert lines[0] == "address,share_units"
        assert lines[1:] == [f"{addresses[0]},57", f"{addresses[1]},0", f"{addresses[2]},43"]

    def test_allocate_json(self, runner, tmp_path, addresses):
        path = write(tmp_path, "members.csv", f"{addresses[0]},1\n{addresses[1]},3\n")
        result = runner.invoke(main, ["allocate", path, "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [d['share_units'] for d in data] == ["25", "75"]

    def test_allocate_invalid_address(self, runner, tmp_path):
        path = write(tmp_path, "members.csv", "not-an-address,10\n")
        result = runner.invoke(main, ["allocate", path])

        assert result.exit_code != 0
        assert "Invalid member address" in result.output

    def test_allocate_bad_row(self, runner, tmp_path, addresses):
        path = write(tmp_path, "members.csv", f"address,balance\n{addresses[0]},many\n")
        result = runner.invoke(main, ["allocate", path])

        assert result.exit_code != 0
        assert "invalid balance" in result.output


class TestPlanCommand:
    """Tests for `hydrafanout plan`."""

    def test_plan_twelve_members(self, runner, tmp_path, addresses):
        path = write(tmp_path, "shares.csv", "".join(f"{a},{i + 1}\n" for i, a in enumerate(addresses[:12])))
        result = runner.invoke(main, ["plan", path, "--balance", "78", "--total", "78"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data['num_members'] == 12
        assert data['num_batches'] == 3
        batches = data['sessions'][0]['batches']
        assert [len(b['operations']) for b in batches] == [5, 5, 2]
        # Largest share first, one unit of balance per share
        first = batches[0]['operations'][0]
        assert first['member'] == addresses[11]
        assert Decimal(first['expected_amount']) == 12

    def test_plan_session_limit(self, runner, tmp_path, addresses):
        path = write(tmp_path, "shares.csv", "".join(f"{a},1\n" for a in addresses[:12]))
        result = runner.invoke(main, ["plan", path, "--batch-size", "2", "--batches-per-session", "4"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert [len(s['batches']) for s in data['sessions']] == [4, 2]

    def test_plan_bad_batch_size(self, runner, tmp_path, addresses):
        path = write(tmp_path, "shares.csv", f"{addresses[0]},1\n")
        result = runner.invoke(main, ["plan", path, "--batch-size", "0"])
        assert result.exit_code != 0


class TestVerifyExportCommand:
    """Tests for `hydrafanout verify-export`."""

    def test_summary(self, runner, tmp_path, addresses):
        records = [
            DistributionRecord(a, f"tx-{i}", Decimal(10), Decimal("0.25"))
            for i, a in enumerate(addresses[:4])
        ]
        path = write(tmp_path, "export.csv", serialize_records(records))
        result = runner.invoke(main, ["verify-export", path])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data['num_records'] == 4
        assert Decimal(data['total_paid']) == 1
        assert len(data['merkle_root']) == 64

    def test_duplicate_member(self, runner, tmp_path, addresses):
        records = [DistributionRecord(addresses[0], f"tx-{i}", Decimal(10), Decimal(1)) for i in range(2)]
        path = write(tmp_path, "export.csv", serialize_records(records))
        result = runner.invoke(main, ["verify-export", path])

        assert result.exit_code != 0
        assert "Duplicate record" in result.output

    def test_bad_header(self, runner, tmp_path):
        path = write(tmp_path, "export.csv", "Wallet Address,Transaction Hash,Amount\n")
        result = runner.invoke(main, ["verify-export", path])

        assert result.exit_code != 0
        assert "Unexpected export header" in result.output

    def test_verbose_flag(self, runner, tmp_path):
        path = write(tmp_path, "export.csv", "")
        result = runner.invoke(main, ["--verbose", "verify-export", path])
        assert result.exit_code == 0, result.output

"""
Unit tests for the command-line entry point.
"""

from unittest.mock import patch

import pytest

from marketsync.cli import build_parser, main
from marketsync.sync_handler import RunResult


def _result(status):
    return RunResult(entity_type="wb_cards", status=status)


@patch("marketsync.cli.Database")
class TestCli:
    """Test command dispatch and exit codes."""

    @patch("marketsync.cli.Config.validate")
    @patch("marketsync.cli.run_job", return_value=[_result("success")])
    def test_job_success_exit_zero(self, mock_run, mock_validate, mock_db):
        """Test a successful run exits with 0 and closes the pool."""
        assert main(["wb-cards"]) == 0
        mock_validate.assert_called_once_with("wb-cards")
        mock_run.assert_called_once_with("wb-cards", mock_db.return_value)
        mock_db.return_value.close.assert_called_once()

    @patch("marketsync.cli.Config.validate")
    @patch("marketsync.cli.run_job", return_value=[_result("success"), _result("error")])
    def test_any_failed_stream_exits_one(self, mock_run, mock_validate, mock_db):
        """Test one failed stream makes the process exit with 1."""
        assert main(["ozon-orders"]) == 1

    @patch("marketsync.cli.Config.validate", side_effect=ValueError("Missing required environment variables: MS_TOKEN"))
    @patch("marketsync.cli.run_job")
    def test_invalid_config_exits_one(self, mock_run, mock_validate, mock_db):
        """Test configuration errors exit with 1 before any run."""
        assert main(["moysklad"]) == 1
        mock_run.assert_not_called()

    @patch("marketsync.cli.get_last_runs", return_value=[])
    def test_check(self, mock_runs, mock_db):
        """Test --check lists the last runs of every stream of the job."""
        assert main(["ozon-orders", "--check"]) == 0
        entities = [c.args[1] for c in mock_runs.call_args_list]
        assert entities == ["ozon_orders_fbo", "ozon_orders_fbs"]

    @patch("marketsync.cli.table_stats", return_value={"table": "wb_cards", "total": 1, "updated_last_hour": 0})
    def test_stats(self, mock_stats, mock_db):
        """Test --stats queries the job's table."""
        assert main(["wb-cards", "--stats"]) == 0
        mock_stats.assert_called_once_with(mock_db.return_value, "wb_cards")

    @patch("marketsync.cli.cleanup_old_logs", return_value=3)
    def test_cleanup_logs(self, mock_cleanup, mock_db):
        """Test cleanup-logs passes the entity and retention."""
        assert main(["cleanup-logs", "wb_orders", "--days", "14"]) == 0
        mock_cleanup.assert_called_once_with(mock_db.return_value, "wb_orders", 14)

    def test_init_db_applies_schema(self, mock_db):
        """Test init-db executes the bundled schema."""
        assert main(["init-db"]) == 0
        sql = mock_db.return_value.execute.call_args.args[0]
        assert "CREATE TABLE IF NOT EXISTS sync_cursor_state" in sql

    def test_check_and_stats_are_exclusive(self, mock_db):
        """Test --check and --stats cannot be combined."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["wb-orders", "--check", "--stats"])

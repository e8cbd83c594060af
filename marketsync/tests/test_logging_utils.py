"""
Unit tests for the console log helpers.
"""

import re

from marketsync.utils.logging_utils import (
    log_error,
    log_progress,
    log_section_complete,
    log_section_start,
    log_warning,
)

STAMP = r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] "


class TestLogLines:
    """Test the prefix and wording of every helper."""

    def test_each_helper_prints_one_stamped_line(self, capsys):
        """Test every helper writes exactly one newline-terminated line."""
        log_section_start("Sync - wb_cards")
        log_progress("Pagination - wb_cards", "Page 1: 100 records")
        log_warning("Upsert - wb_orders", "Rejected 2 records without srid")
        log_error("Sync - wb_cards", ValueError("boom"))
        log_section_complete("Sync - wb_cards", "success: 100 records")

        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 5
        assert all(re.match(STAMP, line) for line in lines)
        assert [re.sub(STAMP, "", line) for line in lines] == [
            "Starting: Sync - wb_cards",
            "Pagination - wb_cards: Page 1: 100 records",
            "Warning in Upsert - wb_orders: Rejected 2 records without srid",
            "Error in Sync - wb_cards: boom",
            "Completed: Sync - wb_cards - success: 100 records",
        ]

    def test_complete_without_details(self, capsys):
        """Test no trailing dash is printed without details."""
        log_section_complete("Database")
        assert capsys.readouterr().out.rstrip().endswith("Completed: Database")

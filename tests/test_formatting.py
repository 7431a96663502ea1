"""
Tests for formatting utilities
"""

from mongo_transfer.formatting import (
    format_namespace,
    format_number,
    format_progress,
    format_records,
    format_size,
)


class TestFormatNumber:
    """Test number formatting with underscore separators"""

    def test_small_numbers(self):
        """Test numbers under 1000 remain unchanged"""
        assert format_number(0) == "0"
        assert format_number(999) == "999"

    def test_thousands_and_millions(self):
        """Test underscore separators"""
        assert format_number(1234) == "1_234"
        assert format_number(1234567) == "1_234_567"


class TestFormatSize:
    """Test byte size formatting"""

    def test_bytes(self):
        """Test byte values have no decimals"""
        assert format_size(0) == "0 B"
        assert format_size(512) == "512 B"

    def test_larger_units(self):
        """Test KB/MB/GB"""
        assert format_size(1024) == "1.0 KB"
        assert format_size(1536) == "1.5 KB"
        assert format_size(1024 * 1024) == "1.0 MB"
        assert format_size(3 * 1024 ** 3) == "3.0 GB"


class TestFormatRecords:
    """Test record counts with K/M suffix"""

    def test_suffixes(self):
        """Test thresholds"""
        assert format_records(999) == "999"
        assert format_records(12345) == "12.3K"
        assert format_records(1234567) == "1.2M"


class TestFormatProgress:
    """Test progress lines"""

    def test_namespace_labels(self):
        """Test scope labels"""
        assert format_namespace("shop", "users") == "shop.users"
        assert format_namespace("shop", None) == "shop"
        assert format_namespace(None, None) == "all databases"

    def test_batch_progress(self):
        """Test a determinate event inside a batch"""
        event = {
            'phase': 'exporting', 'database': 'shop', 'collection': 'users',
            'current': 500, 'total': 1000, 'batchIndex': 1, 'batchTotal': 2,
        }
        assert format_progress(event) == "[1/2] exporting shop.users 500/1_000"

    def test_indeterminate_progress(self):
        """Test an event without a known total"""
        event = {'phase': 'importing', 'database': '', 'collection': '', 'current': 42, 'total': -1}
        assert format_progress(event) == "importing 42"

    def test_bare_phase(self):
        """Test an event with nothing but a phase"""
        assert format_progress({'phase': 'analyzing', 'current': 0, 'total': -1}) == "analyzing"

"""Property-based tests for operation logging"""
import logging
import tempfile
from pathlib import Path
from hypothesis import given, strategies as st, settings

from dnsmasq_dhcp.logger import OperationLogger, get_logger


# **Feature: dnsmasq-dhcp, Property: Reservation changes are logged**
@given(
    operator=st.text(min_size=1, max_size=20, alphabet=st.characters(whitelist_categories=('L', 'N'))),
    action=st.sampled_from(["CREATE", "DELETE", "CLEANUP"]),
    obj=st.text(min_size=1, max_size=50, alphabet=st.characters(whitelist_categories=('L', 'N'), whitelist_characters=":-._ ")).filter(lambda x: x.strip() == x and x),
    details=st.text(min_size=0, max_size=100, alphabet=st.characters(whitelist_categories=('L', 'N'), whitelist_characters=":-._ ")).filter(lambda x: x.strip() == x),
)
@settings(max_examples=100)
def test_operation_logging(operator: str, action: str, obj: str, details: str):
    """For any reservation change, a log entry is written with timestamp, operator and object."""
    with tempfile.NamedTemporaryFile(suffix=".log", delete=False) as f:
        temp_path = Path(f.name)

    try:
        logger = OperationLogger(temp_path)

        logger.log_operation(
            operator=operator,
            action=action,
            obj=obj,
            details=details if details else None,
        )

        with open(temp_path, "r", encoding="utf-8") as f:
            content = f.read()

        assert content.strip()
        assert operator in content
        assert action in content
        assert obj in content

        logs = logger.get_logs(limit=10)
        assert len(logs) >= 1

        latest = logs[0]
        assert latest["operator"] == operator
        assert latest["action"] == action
        assert latest["object"] == obj
        assert latest["logger"] == "dnsmasq-dhcp"
    finally:
        temp_path.unlink(missing_ok=True)


def test_log_filtering():
    """Test log filtering by operator."""
    with tempfile.NamedTemporaryFile(suffix=".log", delete=False) as f:
        temp_path = Path(f.name)

    try:
        logger = OperationLogger(temp_path)

        logger.log_operation("10.0.0.5", "CREATE", "reservation aa:bb:cc:dd:ee:01")
        logger.log_operation("system", "CLEANUP", "dhcpopts.conf")
        logger.log_operation("10.0.0.5", "DELETE", "reservation aa:bb:cc:dd:ee:01")

        client_logs = logger.get_logs(filter_operator="10.0.0.5")
        assert len(client_logs) == 2
        assert [log["action"] for log in client_logs] == ["DELETE", "CREATE"]

        system_logs = logger.get_logs(filter_operator="system")
        assert len(system_logs) == 1
        assert system_logs[0]["object"] == "dhcpopts.conf"
    finally:
        temp_path.unlink(missing_ok=True)


def test_log_limit():
    """Test log limit."""
    with tempfile.NamedTemporaryFile(suffix=".log", delete=False) as f:
        temp_path = Path(f.name)

    try:
        logger = OperationLogger(temp_path)

        for i in range(20):
            logger.log_operation("system", "CREATE", f"reservation {i}")

        logs = logger.get_logs(limit=5)
        assert len(logs) == 5
        assert logs[0]["object"] == "reservation 19"
    finally:
        temp_path.unlink(missing_ok=True)


def test_module_logs_are_not_operations():
    """Diagnostic messages from modules do not show up as operations."""
    with tempfile.NamedTemporaryFile(suffix=".log", delete=False) as f:
        temp_path = Path(f.name)

    try:
        logger = OperationLogger(temp_path)

        get_logger("parser").warning("Skipping IPv6 subnet | found | on | line | 3")
        logging.getLogger("uvicorn.error").info("Started server process")
        logger.log_operation("system", "DELETE", "reservation aa:bb:cc:dd:ee:01", "192.168.1.50 web")

        content = temp_path.read_text(encoding="utf-8")
        assert "dnsmasq-dhcp.parser" in content
        assert "Started server process" in content

        logs = logger.get_logs()
        assert len(logs) == 1
        assert logs[0]["details"] == "192.168.1.50 web"
    finally:
        temp_path.unlink(missing_ok=True)


def test_error_level_operation():
    with tempfile.NamedTemporaryFile(suffix=".log", delete=False) as f:
        temp_path = Path(f.name)

    try:
        logger = OperationLogger(temp_path)

        logger.log_operation("system", "RELOAD", "systemctl reload dnsmasq", "exited with code 1", level="ERROR")

        logs = logger.get_logs()
        assert logs[0]["level"] == "ERROR"
        assert logs[0]["action"] == "RELOAD"
        assert logs[0]["details"] == "exited with code 1"
    finally:
        temp_path.unlink(missing_ok=True)

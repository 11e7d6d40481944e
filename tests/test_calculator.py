"""
Tests for the multiplication orchestrator.
"""
import pytest
from unittest.mock import patch, MagicMock

from monday_calculator.auth import Session
from monday_calculator.calculator import execute_multiplication, resolve_identifiers
from monday_calculator.monday import MondayAPIError, MondayClient
from monday_calculator.payloads import CalculationRequest, PayloadOrigin, ValidationFailure


@pytest.fixture
def session():
    return Session(account_id="1234", user_id="5678", back_to_url=None, short_lived_token="token")


@pytest.fixture
def monday_client():
    return MagicMock(spec=MondayClient)


def make_request(**overrides):
    fields = dict(
        origin=PayloadOrigin.ACTION,
        board_id="999",
        item_id="111",
        source_column_id="numbers",
        factor_column_id="numbers1",
        target_column_id="numbers2",
    )
    fields.update(overrides)
    return CalculationRequest(**fields)


class TestResolveIdentifiers:
    """Tests for identifier fallbacks."""

    def test_complete_request_untouched(self, monday_client):
        with patch("monday_calculator.monday.get_board_items") as board_items, \
                patch("monday_calculator.monday.get_board_id_for_item") as board_for_item:
            request = resolve_identifiers(monday_client, make_request())

        assert request.item_id == "111"
        board_items.assert_not_called()
        board_for_item.assert_not_called()

    def test_first_board_item(self, monday_client):
        with patch("monday_calculator.monday.get_board_items", return_value=[{"id": 5}, {"id": 6}]):
            request = resolve_identifiers(monday_client, make_request(item_id=None))

        assert request.item_id == "5"

    def test_empty_board(self, monday_client):
        with patch("monday_calculator.monday.get_board_items", return_value=[]):
            with pytest.raises(ValidationFailure) as exc_info:
                resolve_identifiers(monday_client, make_request(item_id=None))

        assert exc_info.value.fields == ["itemId"]

    def test_board_from_item(self, monday_client):
        with patch("monday_calculator.monday.get_board_id_for_item", return_value="777") as board_for_item:
            request = resolve_identifiers(monday_client, make_request(board_id=None))

        assert request.board_id == "777"
        board_for_item.assert_called_once_with(monday_client, "111")

    def test_unresolvable_board(self, monday_client):
        with patch("monday_calculator.monday.get_board_id_for_item", return_value=None):
            with pytest.raises(ValidationFailure) as exc_info:
                resolve_identifiers(monday_client, make_request(board_id=None))

        assert exc_info.value.fields == ["boardId"]

    def test_target_defaults_to_source(self, monday_client):
        request = resolve_identifiers(monday_client, make_request(target_column_id=None))

        assert request.target_column_id == "numbers"

    def test_nothing_given(self, monday_client):
        with pytest.raises(ValidationFailure) as exc_info:
            resolve_identifiers(monday_client, CalculationRequest(origin=PayloadOrigin.ACTION))

        assert exc_info.value.fields == ["boardId", "itemId", "sourceColumnId", "factorColumnId"]
        assert "required" in exc_info.value.message


class TestExecuteMultiplication:
    """Tests for execute_multiplication."""

    @pytest.fixture
    def columns(self):
        with patch("monday_calculator.monday.get_column_value_as_number") as read_number, \
                patch("monday_calculator.monday.change_column_value") as write_column:
            write_column.return_value = {"data": {"change_column_value": {"id": "111"}}}
            yield read_number, write_column

    @pytest.mark.parametrize("source,factor", [(6.0, 7.0), (2.5, 4.0), (-3.0, 1.5), (0.0, 123.0), (1e10, 1e-10)])
    def test_product_written_and_logged(self, monday_client, store, session, columns, source, factor):
        read_number, write_column = columns
        read_number.side_effect = [source, factor]

        outcome = execute_multiplication(monday_client, store, session, make_request())

        assert outcome.result == source * factor
        assert outcome.logged is True
        write_column.assert_called_once()
        assert write_column.call_args[0][3] == "numbers2"
        record = store.get_history_for_item("111")[0]
        assert record["sourceValue"] == source
        assert record["factorValue"] == factor
        assert record["result"] == source * factor
        assert record["accountId"] == "1234"

    def test_reads_both_columns_of_the_item(self, monday_client, store, session, columns):
        read_number, _ = columns
        read_number.side_effect = [6.0, 7.0]

        execute_multiplication(monday_client, store, session, make_request())

        assert [c[0] for c in read_number.call_args_list] == [
            (monday_client, "111", "numbers"),
            (monday_client, "111", "numbers1"),
        ]

    def test_integral_result_written_without_decimal(self, monday_client, store, session, columns):
        read_number, write_column = columns
        read_number.side_effect = [6.0, 7.0]

        execute_multiplication(monday_client, store, session, make_request())

        assert write_column.call_args[0][4] == "42"

    @pytest.mark.parametrize("source,factor,fields", [
        (None, 7.0, ["sourceValue"]),
        (6.0, None, ["factorValue"]),
        (None, None, ["sourceValue", "factorValue"]),
    ])
    def test_invalid_values(self, monday_client, store, session, columns, source, factor, fields):
        read_number, write_column = columns
        read_number.side_effect = [source, factor]

        with pytest.raises(ValidationFailure) as exc_info:
            execute_multiplication(monday_client, store, session, make_request())

        assert exc_info.value.fields == fields
        write_column.assert_not_called()
        assert store.count() == 0

    def test_overflowing_product(self, monday_client, store, session, columns):
        """A product too large for a float is rejected before any write or log."""
        read_number, write_column = columns
        read_number.side_effect = [1e200, 1e200]

        with pytest.raises(ValidationFailure) as exc_info:
            execute_multiplication(monday_client, store, session, make_request())

        assert exc_info.value.fields == ["result"]
        write_column.assert_not_called()
        assert store.count() == 0

    def test_log_failure_is_not_fatal(self, monday_client, session, columns):
        read_number, write_column = columns
        read_number.side_effect = [6.0, 7.0]
        failing_store = MagicMock()
        failing_store.log_calculation.return_value = False

        outcome = execute_multiplication(monday_client, failing_store, session, make_request())

        assert outcome.result == 42.0
        assert outcome.logged is False
        write_column.assert_called_once()

    def test_write_failure(self, monday_client, store, session, columns):
        read_number, write_column = columns
        read_number.side_effect = [6.0, 7.0]
        write_column.return_value = None

        with pytest.raises(MondayAPIError):
            execute_multiplication(monday_client, store, session, make_request())

        assert store.count() == 0


class TestMultiplicationResponse:
    """Tests for response shaping by payload origin."""

    def run(self, monday_client, store, session, origin):
        with patch("monday_calculator.monday.get_column_value_as_number", side_effect=[6.0, 7.0]), \
                patch("monday_calculator.monday.change_column_value", return_value={"data": {}}):
            return execute_multiplication(monday_client, store, session, make_request(origin=origin))

    def test_action_response(self, monday_client, store, session):
        response = self.run(monday_client, store, session, PayloadOrigin.ACTION).to_response()

        assert response == {
            "success": True,
            "result": 42.0,
            "boardId": "999",
            "itemId": "111",
            "sourceColumnId": "numbers",
            "factorColumnId": "numbers1",
            "targetColumnId": "numbers2",
            "sourceValue": 6.0,
            "factorValue": 7.0,
            "logged": True,
        }

    def test_trigger_response(self, monday_client, store, session):
        response = self.run(monday_client, store, session, PayloadOrigin.AUTOMATION_TRIGGER).to_response()

        assert response == {"success": True}

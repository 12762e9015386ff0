"""
Tests for the redemption store backends (functions/shared/redemption_store.py).

Covers:
1. Loading missing, empty and corrupt JSON documents (fail-open + degraded)
2. Atomic saves and round trips
3. insert_if_absent / put_record semantics on both backends
4. Backend selection from the environment
"""

import json
import os
from unittest.mock import patch

import pytest
from botocore.exceptions import ClientError

from shared.redemption_store import (
    DynamoDBRedemptionStore,
    JsonFileRedemptionStore,
    PersistenceError,
    get_redemption_store,
)


def _record(code, email="user@example.com", campaign="goldenticket_2025", **extra):
    record = {
        "code": code,
        "email": email,
        "timestamp": "2025-12-01T10:00:00+00:00",
        "campaign": campaign,
        "website": "goldenticket.sweetsausallerwelt.de",
    }
    record.update(extra)
    return record


class TestJsonFileLoad:
    """Tests for JsonFileRedemptionStore.load."""

    def test_missing_file_loads_empty(self, file_store):
        """A store that was never written is empty and not degraded."""
        assert file_store.load() == {}
        assert file_store.degraded is False

    def test_empty_file_loads_empty(self, file_store, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("   \n", encoding="utf-8")

        assert file_store.load() == {}
        assert file_store.degraded is False

    def test_null_document_loads_empty(self, file_store, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("null", encoding="utf-8")

        assert file_store.load() == {}
        assert file_store.degraded is False

    def test_corrupt_file_fails_open_and_marks_degraded(self, file_store, store_path, cloudwatch):
        """Corrupt JSON yields an empty store but is flagged and reported."""
        store_path.parent.mkdir(parents=True)
        store_path.write_text("{not json", encoding="utf-8")

        assert file_store.load() == {}
        assert file_store.degraded is True

        metric = cloudwatch.put_metric_data.call_args.kwargs["MetricData"][0]
        assert metric["MetricName"] == "RedemptionStoreDegraded"
        assert metric["Dimensions"] == [{"Name": "Backend", "Value": "file"}]

    def test_non_object_document_marks_degraded(self, file_store, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("[1, 2, 3]", encoding="utf-8")

        assert file_store.load() == {}
        assert file_store.degraded is True

    def test_corrupt_file_is_copied_aside_before_overwrite(self, file_store, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("{not json", encoding="utf-8")

        assert file_store.insert_if_absent(_record("AB12CD34")) is True

        backups = [name for name in os.listdir(store_path.parent) if name.startswith("used-codes.json.corrupt-")]
        assert len(backups) == 1
        assert (store_path.parent / backups[0]).read_text(encoding="utf-8") == "{not json"
        assert list(file_store.load()) == ["AB12CD34"]

    def test_corrupt_file_is_copied_aside_only_once(self, file_store, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("[1, 2, 3]", encoding="utf-8")

        file_store.put_record(_record("AB12CD34"))
        file_store.put_record(_record("ZZ99YY88"))

        assert sorted(os.listdir(store_path.parent))[0] == "used-codes.json"
        assert len(os.listdir(store_path.parent)) == 2

    def test_failed_backup_keeps_corrupt_file(self, file_store, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("{not json", encoding="utf-8")
        file_store.load()

        with patch("shared.redemption_store.shutil.copy2", side_effect=OSError("read-only")):
            with pytest.raises(PersistenceError):
                file_store.save({"AB12CD34": _record("AB12CD34")})

        assert store_path.read_text(encoding="utf-8") == "{not json"

    def test_degraded_flag_resets_on_next_good_load(self, file_store, store_path):
        store_path.parent.mkdir(parents=True)
        store_path.write_text("{broken", encoding="utf-8")
        file_store.load()
        assert file_store.degraded is True

        store_path.write_text(json.dumps({"AB12CD34": _record("AB12CD34")}), encoding="utf-8")
        assert "AB12CD34" in file_store.load()
        assert file_store.degraded is False


class TestJsonFileSave:
    """Tests for JsonFileRedemptionStore.save."""

    def test_save_creates_directory_and_round_trips(self, file_store, store_path):
        records = {"AB12CD34": _record("AB12CD34", firstName="Jürgen")}

        file_store.save(records)

        assert store_path.exists()
        assert file_store.load() == records

    def test_save_load_round_trip_is_stable(self, file_store):
        records = {
            "AB12CD34": _record("AB12CD34"),
            "ZZ99YY88": _record("ZZ99YY88", email="other@example.com", campaign="camp2"),
        }
        file_store.save(records)

        file_store.save(file_store.load())

        assert file_store.load() == records

    def test_save_writes_indented_utf8(self, file_store, store_path):
        file_store.save({"AB12CD34": _record("AB12CD34", city="München")})

        text = store_path.read_text(encoding="utf-8")
        assert "München" in text
        assert '\n  "AB12CD34": {' in text

    def test_save_leaves_no_temp_files(self, file_store, store_path):
        file_store.save({"AB12CD34": _record("AB12CD34")})
        file_store.save({})

        assert os.listdir(store_path.parent) == ["used-codes.json"]

    def test_failed_save_raises_and_keeps_previous_document(self, file_store, store_path):
        original = {"AB12CD34": _record("AB12CD34")}
        file_store.save(original)

        with patch("shared.redemption_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(PersistenceError):
                file_store.save({})

        assert file_store.load() == original
        assert os.listdir(store_path.parent) == ["used-codes.json"]

    def test_unserializable_record_raises_persistence_error(self, file_store):
        with pytest.raises(PersistenceError):
            file_store.save({"AB12CD34": {"code": "AB12CD34", "bad": object()}})


class TestJsonFileMutations:
    """Tests for insert_if_absent and put_record on the file store."""

    def test_insert_if_absent_inserts_new_code(self, file_store):
        assert file_store.insert_if_absent(_record("AB12CD34")) is True
        assert "AB12CD34" in file_store.load()

    def test_insert_if_absent_refuses_existing_code(self, file_store):
        file_store.insert_if_absent(_record("AB12CD34", email="first@example.com"))

        assert file_store.insert_if_absent(_record("AB12CD34", email="second@example.com")) is False
        assert file_store.load()["AB12CD34"]["email"] == "first@example.com"

    def test_put_record_overwrites(self, file_store):
        file_store.put_record(_record("AB12CD34", email="first@example.com"))
        file_store.put_record(_record("AB12CD34", email="second@example.com"))

        assert file_store.load()["AB12CD34"]["email"] == "second@example.com"


class TestDynamoDBStore:
    """Tests for DynamoDBRedemptionStore against moto."""

    def test_empty_table_loads_empty(self, dynamodb_store):
        assert dynamodb_store.load() == {}
        assert dynamodb_store.degraded is False

    def test_insert_if_absent_is_conditional(self, dynamodb_store):
        assert dynamodb_store.insert_if_absent(_record("AB12CD34", email="first@example.com")) is True
        assert dynamodb_store.insert_if_absent(_record("AB12CD34", email="second@example.com")) is False

        records = dynamodb_store.load()
        assert records["AB12CD34"]["email"] == "first@example.com"

    def test_put_record_overwrites(self, dynamodb_store):
        dynamodb_store.put_record(_record("AB12CD34", email="first@example.com"))
        dynamodb_store.put_record(_record("AB12CD34", email="second@example.com"))

        assert dynamodb_store.load()["AB12CD34"]["email"] == "second@example.com"

    def test_save_replaces_collection(self, dynamodb_store):
        dynamodb_store.put_record(_record("OLD00001"))

        records = {"AB12CD34": _record("AB12CD34"), "ZZ99YY88": _record("ZZ99YY88")}
        dynamodb_store.save(records)

        assert dynamodb_store.load() == records

    def test_missing_table_fails_open(self, mock_dynamodb):
        store = DynamoDBRedemptionStore("no-such-table")

        assert store.load() == {}
        assert store.degraded is True

    def test_insert_into_missing_table_raises(self, mock_dynamodb):
        store = DynamoDBRedemptionStore("no-such-table")

        with pytest.raises(PersistenceError):
            store.insert_if_absent(_record("AB12CD34"))

    def test_throttled_put_raises_persistence_error(self, dynamodb_store):
        error = ClientError(
            {"Error": {"Code": "ProvisionedThroughputExceededException", "Message": "slow down"}},
            "PutItem",
        )
        with patch.object(DynamoDBRedemptionStore, "table") as table:
            table.put_item.side_effect = error
            with pytest.raises(PersistenceError):
                dynamodb_store.put_record(_record("AB12CD34"))


class TestGetRedemptionStore:
    """Tests for backend selection."""

    def test_defaults_to_file_store(self):
        store = get_redemption_store()

        assert isinstance(store, JsonFileRedemptionStore)
        assert store.path == os.path.join("data", "used-codes.json")

    def test_file_store_path_from_environment(self, store_path):
        store = get_redemption_store()

        assert isinstance(store, JsonFileRedemptionStore)
        assert store.path == str(store_path)

    def test_dynamodb_backend(self, monkeypatch):
        monkeypatch.setenv("REDEMPTION_STORE_BACKEND", "DynamoDB")
        monkeypatch.setenv("REDEMPTIONS_TABLE", "custom-table")

        store = get_redemption_store()

        assert isinstance(store, DynamoDBRedemptionStore)
        assert store.table_name == "custom-table"

    def test_unknown_backend_falls_back_to_file(self, monkeypatch):
        monkeypatch.setenv("REDEMPTION_STORE_BACKEND", "postgres")

        assert isinstance(get_redemption_store(), JsonFileRedemptionStore)

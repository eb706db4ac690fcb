import json

import pytest

from livesettings.core.exceptions import InvalidStoreDataError
from livesettings.core.setting import Setting
from livesettings.storage import JSONFileStorage


@pytest.fixture
def path(tmp_path):
    return tmp_path / "settings.json"


class TestJSONFileStorage:
    def test_document_layout(self, path):
        storage = JSONFileStorage(path)
        storage.save(Setting(key="b", raw_value="2", value_type="integer"), changed_by="alice")
        storage.save(Setting(key="a", raw_value="1"))

        records = json.loads(path.read_text())
        assert [record["key"] for record in records] == ["a", "b"]
        assert records[1]["value"] == "2"
        assert records[1]["value_type"] == "integer"
        assert records[1]["history"][0]["changed_by"] == "alice"
        assert "key" not in records[1]["history"][0]

    def test_millisecond_timestamps(self, path):
        saved = JSONFileStorage(path).save(Setting(key="k", raw_value="v"))
        assert saved.updated_at.microsecond % 1000 == 0

    def test_namespace_gets_own_file(self, path):
        storage = JSONFileStorage(path).with_namespace("billing")
        storage.save(Setting(key="k", raw_value="v"))
        assert (path.parent / "settings.billing.json").exists()
        assert not path.exists()

    def test_missing_file_reads_empty(self, path):
        storage = JSONFileStorage(path)
        assert storage.all() == []
        assert storage.last_updated_at() is None

    def test_invalid_json_is_invalid_data(self, path):
        path.write_text("{not json")
        with pytest.raises(InvalidStoreDataError):
            JSONFileStorage(path).all()

    def test_non_array_payload_is_invalid_data(self, path):
        path.write_text('{"key": "value"}')
        with pytest.raises(InvalidStoreDataError):
            JSONFileStorage(path).all()

    def test_write_leaves_no_temporary_files(self, path):
        storage = JSONFileStorage(path)
        for i in range(3):
            storage.save(Setting(key=f"k{i}", raw_value="v"))
        assert [p.name for p in path.parent.iterdir()] == ["settings.json"]

    def test_external_edit_is_seen(self, path):
        storage = JSONFileStorage(path)
        storage.save(Setting(key="k", raw_value="v"))
        records = json.loads(path.read_text())
        records[0]["value"] = "edited"
        records[0]["updated_at"] = "2099-01-01T00:00:00.000Z"
        path.write_text(json.dumps(records))

        assert storage.find_by_key("k").raw_value == "edited"
        assert storage.last_updated_at().year == 2099

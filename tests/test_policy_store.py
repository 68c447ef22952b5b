"""Unit tests for fileopts.policies — UploadMode parsing and the PolicyStore."""

import pytest

from fileopts.engine.config import FieldConfig
from fileopts.engine.errors import FileOptsConfigError
from fileopts.fields import FieldKey, StaticSchemaIntrospector
from fileopts.policies import REMOVE_SENTINEL, MemoryConfigBackend, PolicyStore, UploadMode


ARTICLE_IMAGE = FieldKey.schema("node", "article", "field_image")


@pytest.fixture
def backend():
    return MemoryConfigBackend()


@pytest.fixture
def store(backend):
    return PolicyStore(backend)


@pytest.fixture
def introspector():
    return StaticSchemaIntrospector.from_config([
        FieldConfig(key="node.article.field_image", entity_type_label="Content"),
        FieldConfig(key="user.user.user_picture", entity_type_label="User"),
    ])


class TestUploadMode:

    def test_values(self):
        assert [int(m) for m in UploadMode] == [-1, 0, 1, 2]

    @pytest.mark.parametrize("raw,expected", [
        (0, UploadMode.RENAME),
        ("1", UploadMode.REPLACE),
        ("reject", UploadMode.REJECT),
        ("INHERIT", UploadMode.INHERIT),
        (" -1 ", UploadMode.INHERIT),
        (UploadMode.REPLACE, UploadMode.REPLACE),
    ])
    def test_parse(self, raw, expected):
        assert UploadMode.parse(raw) is expected

    @pytest.mark.parametrize("raw", [3, 99, "overwrite", True, None, 1.5])
    def test_parse_invalid(self, raw):
        with pytest.raises(FileOptsConfigError):
            UploadMode.parse(raw)

    def test_is_concrete(self):
        assert UploadMode.INHERIT.is_concrete is False
        assert all(m.is_concrete for m in (UploadMode.RENAME, UploadMode.REPLACE, UploadMode.REJECT))


class TestGetSetMode:

    def test_unset_defaults_to_rename(self, store):
        assert store.get_mode(ARTICLE_IMAGE) is UploadMode.RENAME

    def test_set_then_get(self, store):
        assert store.set_mode(ARTICLE_IMAGE, UploadMode.REPLACE) is UploadMode.REPLACE
        assert store.get_mode(ARTICLE_IMAGE) is UploadMode.REPLACE

    def test_string_keys_accepted(self, store):
        store.set_mode("node.article.field_image", "reject")
        assert store.get_mode(ARTICLE_IMAGE) is UploadMode.REJECT

    def test_inherit_is_storable(self, store):
        store.set_mode(ARTICLE_IMAGE, UploadMode.INHERIT)
        assert store.get_mode(ARTICLE_IMAGE) is UploadMode.INHERIT

    def test_invalid_mode_not_stored(self, store, backend):
        with pytest.raises(FileOptsConfigError):
            store.set_mode(ARTICLE_IMAGE, 5)
        assert backend.get(ARTICLE_IMAGE.config_key) is None

    def test_stored_under_config_key(self, store, backend):
        store.set_mode(ARTICLE_IMAGE, 2)
        assert backend.get("upload_option.node.article.field_image") == 2

    def test_corrupt_stored_value_reads_as_rename(self, store, backend):
        backend.set(ARTICLE_IMAGE.config_key, "garbage")
        assert store.get_mode(ARTICLE_IMAGE) is UploadMode.RENAME

    @pytest.mark.parametrize("text", ["a.b", "Bad__Key", "node.article.field image", ""])
    def test_malformed_key_reads_as_rename(self, store, text):
        assert store.get_mode(text) is UploadMode.RENAME

    def test_malformed_key_still_rejected_on_write(self, store, backend):
        with pytest.raises(FileOptsConfigError):
            store.set_mode("a.b", UploadMode.REJECT)
        assert backend.keys("") == []


class TestResolveMode:

    def test_stored_mode(self, store):
        store.set_mode(ARTICLE_IMAGE, UploadMode.REJECT)
        assert store.resolve_mode(ARTICLE_IMAGE) is UploadMode.REJECT

    def test_inherit_resolves_to_default(self, backend):
        store = PolicyStore(backend, default_mode=UploadMode.REPLACE)
        store.set_mode(ARTICLE_IMAGE, UploadMode.INHERIT)
        assert store.resolve_mode(ARTICLE_IMAGE) is UploadMode.REPLACE

    def test_inherit_resolves_to_rename_by_default(self, store):
        store.set_mode(ARTICLE_IMAGE, UploadMode.INHERIT)
        assert store.resolve_mode(ARTICLE_IMAGE) is UploadMode.RENAME

    def test_override_wins(self, store):
        store.set_mode(ARTICLE_IMAGE, UploadMode.REJECT)
        assert store.resolve_mode(ARTICLE_IMAGE, override="replace") is UploadMode.REPLACE

    def test_inherit_override_falls_through(self, store):
        store.set_mode(ARTICLE_IMAGE, UploadMode.REJECT)
        assert store.resolve_mode(ARTICLE_IMAGE, override=UploadMode.INHERIT) is UploadMode.REJECT

    def test_default_must_be_concrete(self, backend):
        with pytest.raises(FileOptsConfigError):
            PolicyStore(backend, default_mode=UploadMode.INHERIT)


class TestCustomFields:

    def test_register_starts_as_rename(self, store):
        assert store.register_custom_field("teaser_image") is True
        assert store.list_custom_fields() == [("teaser_image", UploadMode.RENAME)]

    def test_register_existing_is_noop(self, store):
        store.register_custom_field("teaser_image")
        store.set_mode(FieldKey.custom("teaser_image"), UploadMode.REJECT)
        assert store.register_custom_field("teaser_image") is False
        assert store.get_mode(FieldKey.custom("teaser_image")) is UploadMode.REJECT

    def test_register_invalid_name(self, store):
        with pytest.raises(FileOptsConfigError):
            store.register_custom_field("Teaser Image")

    def test_remove_is_idempotent(self, store):
        store.register_custom_field("teaser_image")
        assert store.remove_custom_field("teaser_image") is True
        assert store.remove_custom_field("teaser_image") is False
        assert store.list_custom_fields() == []

    def test_list_in_insertion_order(self, store):
        for name in ("zeta", "alpha", "mid"):
            store.register_custom_field(name)
        assert [name for name, _ in store.list_custom_fields()] == ["zeta", "alpha", "mid"]

    def test_custom_and_schema_share_lookup(self, store):
        store.register_custom_field("field_image")
        store.set_mode(ARTICLE_IMAGE, UploadMode.REPLACE)
        assert store.get_mode(FieldKey.custom("field_image")) is UploadMode.RENAME
        assert store.get_mode(ARTICLE_IMAGE) is UploadMode.REPLACE


class TestSubmissions:

    def test_remove_sentinel_deletes(self, store):
        store.register_custom_field("teaser_image")
        result = store.apply_custom_submission({"teaser_image": REMOVE_SENTINEL})
        assert result == {"teaser_image": "removed"}
        assert "teaser_image" not in [name for name, _ in store.list_custom_fields()]

    def test_remove_sentinel_as_string(self, store):
        store.register_custom_field("teaser_image")
        store.apply_custom_submission({"teaser_image": "99"})
        assert store.list_custom_fields() == []

    def test_custom_submission_sets(self, store):
        store.register_custom_field("banner")
        assert store.apply_custom_submission({"banner": "2"}) == {"banner": "set"}
        assert store.get_mode(FieldKey.custom("banner")) is UploadMode.REJECT

    def test_custom_submission_all_or_nothing(self, store):
        store.register_custom_field("banner")
        store.register_custom_field("logo")
        with pytest.raises(FileOptsConfigError):
            store.apply_custom_submission({"banner": 1, "logo": 42})
        assert store.get_mode(FieldKey.custom("banner")) is UploadMode.RENAME

    def test_field_submission_by_form_name(self, store, introspector):
        written = store.apply_field_submission(introspector, {
            "upload_option__node__article__field_image": "1",
            "unrelated": "x",
        })
        assert written == 1
        assert store.get_mode(ARTICLE_IMAGE) is UploadMode.REPLACE
        assert store.get_mode("user.user.user_picture") is UploadMode.RENAME

    def test_field_submission_invalid_value(self, store, introspector):
        with pytest.raises(FileOptsConfigError):
            store.apply_field_submission(introspector, {"upload_option__node__article__field_image": 7})

    def test_list_field_policies(self, store, introspector):
        store.set_mode(ARTICLE_IMAGE, UploadMode.REJECT)
        store.register_custom_field("banner")
        policies = store.list_field_policies(introspector)
        assert [(p.key.canonical, p.mode, p.provenance) for p in policies] == [
            ("node.article.field_image", UploadMode.REJECT, "schema"),
            ("user.user.user_picture", UploadMode.RENAME, "schema"),
            ("banner", UploadMode.RENAME, "custom"),
        ]

    def test_import_modes(self, store):
        assert store.import_modes([("node.article.field_image", "replace"), ("banner", 2)]) == 2
        assert store.get_mode(FieldKey.custom("banner")) is UploadMode.REJECT

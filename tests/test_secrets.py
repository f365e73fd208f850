"""
Tests for the run-scoped secret store — lazy materialization, sources,
reference resolution, and masking.
"""

import pytest
from pydantic import SecretStr

from hostconverge.core.errors import ExecutionError
from hostconverge.core.models import SecretRef, SecretSpec
from hostconverge.core.secrets import SecretStore, as_secret_ref, find_secret_refs


def _store(registry, environ=None, **specs) -> SecretStore:
    parsed = {name: SecretSpec.model_validate(data) for name, data in specs.items()}
    return SecretStore(parsed, registry.keygen, registry.filesystem, environ=environ or {})


class TestReferences:
    def test_as_secret_ref(self):
        assert as_secret_ref({"secret": "db"}) == SecretRef(secret="db")
        assert as_secret_ref({"secret": "k", "field": "public_key"}).field == "public_key"
        assert as_secret_ref(SecretRef(secret="x")) == SecretRef(secret="x")

    def test_extra_keys_are_not_a_reference(self):
        assert as_secret_ref({"secret": "db", "note": "x"}) is None
        assert as_secret_ref("secret") is None

    def test_find_nested(self):
        value = {"a": {"secret": "one"}, "b": [1, {"c": {"secret": "two", "field": "value"}}]}
        assert sorted(r.secret for r in find_secret_refs(value)) == ["one", "two"]
        assert find_secret_refs({"plain": "text"}) == []


class TestKeypairs:
    def test_lazy(self, registry, host):
        store = _store(registry, key={"type": "ssh-keypair", "comment": "u@h"})
        assert host.call_count == 0
        assert store.resolved_names == []

        private = store.get("key", "private_key")
        assert "MOCK-PRIVATE-1" in private.get_secret_value()
        assert store.resolved_names == ["key"]

    def test_generated_once_per_run(self, registry, host):
        store = _store(registry, key={"type": "ssh-keypair", "comment": "u@h"})
        store.get("key", "private_key")
        public = store.get("key", "public_key").get_secret_value()
        assert public == "ssh-rsa MOCK-PUBLIC-1 u@h\n"
        assert len(host.calls_for("keygen")) == 1

    def test_loaded_from_existing_files(self, registry, host):
        host.files["/home/u/.ssh/id_rsa"] = b"EXISTING-PRIVATE"
        host.files["/home/u/.ssh/id_rsa.pub"] = b"ssh-rsa EXISTING u@h\n"
        store = _store(registry, key={"type": "ssh-keypair", "load_from": "/home/u/.ssh/id_rsa"})

        assert store.get("key", "private_key").get_secret_value() == "EXISTING-PRIVATE"
        assert store.get("key", "public_key").get_secret_value() == "ssh-rsa EXISTING u@h\n"
        assert host.calls_for("keygen") == []

    def test_generated_when_public_half_missing(self, registry, host):
        host.files["/home/u/.ssh/id_rsa"] = b"ORPHAN"
        store = _store(registry, key={"type": "ssh-keypair", "load_from": "/home/u/.ssh/id_rsa"})
        assert "MOCK-PRIVATE" in store.get("key", "private_key").get_secret_value()

    def test_keygen_failure_propagates(self, registry, host):
        host.set_failure("keygen", "u@h", "entropy exhausted")
        store = _store(registry, key={"type": "ssh-keypair", "comment": "u@h"})
        with pytest.raises(ExecutionError, match="entropy exhausted"):
            store.get("key", "public_key")


class TestPasswords:
    def test_literal_value(self, registry):
        store = _store(registry, db={"type": "password", "value": "vagrant"})
        assert store.get("db").get_secret_value() == "vagrant"

    def test_from_environment(self, registry):
        store = _store(registry, {"MYSQL_ROOT_PASSWORD": "s3cret"}, db={"type": "password", "env": "MYSQL_ROOT_PASSWORD"})
        assert store.get("db").get_secret_value() == "s3cret"

    def test_generated_when_env_unset(self, registry):
        store = _store(registry, db={"type": "password", "env": "NOT_SET", "length": 20})
        value = store.get("db").get_secret_value()
        assert len(value) == 20
        assert store.get("db").get_secret_value() == value

    def test_masked(self, registry):
        store = _store(registry, db={"type": "password", "value": "hunter2"})
        secret = store.get("db")
        assert isinstance(secret, SecretStr)
        assert "hunter2" not in repr(secret)
        assert "hunter2" not in str(secret)


class TestLookupErrors:
    def test_unknown_secret(self, registry):
        with pytest.raises(ExecutionError) as exc:
            _store(registry).get("nope")
        assert exc.value.collaborator == "secrets"

    def test_unknown_field(self, registry):
        store = _store(registry, db={"type": "password", "value": "x"})
        with pytest.raises(ExecutionError, match="no field 'private_key'"):
            store.get("db", "private_key")


class TestResolve:
    def test_resolve_and_reveal(self, registry):
        store = _store(registry, db={"type": "password", "value": "pw"})
        value = {"password": {"secret": "db"}, "list": ["x", {"secret": "db"}], "n": 3}

        resolved = store.resolve(value)
        assert isinstance(resolved["password"], SecretStr)
        assert store.reveal(value) == {"password": "pw", "list": ["x", "pw"], "n": 3}

    def test_reveal_plain_values_unchanged(self, registry):
        store = _store(registry)
        assert store.reveal("plain") == "plain"
        assert store.reveal(None) is None

    def test_clear_forgets_material(self, registry, host):
        store = _store(registry, key={"type": "ssh-keypair"})
        first = store.get("key", "public_key").get_secret_value()
        store.clear()
        assert store.resolved_names == []
        second = store.get("key", "public_key").get_secret_value()
        assert first != second
        assert len(host.calls_for("keygen")) == 2

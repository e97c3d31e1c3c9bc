"""Candidate resolution and registration against the in-memory store."""

from __future__ import annotations

from dataclasses import replace

import pytest

from bouncer.admission import credentials
from bouncer.admission.domain import PRE_CORE, Identity, IdentityRecord
from bouncer.admission.errors import BadCiphertext, BadKey, NotFound
from bouncer.admission.registration import build_record, register
from bouncer.admission.resolver import CandidateResolver
from bouncer.records.stores import InMemoryRecordStore


def test_register_stores_only_ciphertext_and_hash():
    store = InMemoryRecordStore()
    record_id, secret = register(store, Identity(name="Grace Hopper", cohort="2022", ta=True))

    stored = store.find_by_id(record_id)
    assert "Grace" not in stored.encrypted_name
    assert stored.lookup_hash == credentials.lookup_hash(secret)
    assert stored.cohort == "2022" and stored.ta is True


@pytest.mark.parametrize("cohort", ["", PRE_CORE, "2026", "2026w"])
def test_build_record_accepts_valid_cohorts(cohort: str):
    record, _ = build_record(Identity(name="A", cohort=cohort))
    assert record.cohort == cohort


@pytest.mark.parametrize("identity", [Identity(name="A", cohort="class of 22"), Identity(name="   ")])
def test_build_record_rejects_invalid_input(identity: Identity):
    with pytest.raises(ValueError):
        build_record(identity)


def test_resolve_returns_identity_and_record_id():
    store = InMemoryRecordStore()
    record_id, secret = register(store, Identity(name="Alan Turing", cohort="2019", professor=True))

    identity, found_id = CandidateResolver(store).resolve(secret)

    assert found_id == record_id
    assert identity == Identity(name="Alan Turing", cohort="2019", professor=True)


def test_resolve_skips_candidate_that_collides_on_lookup_hash():
    store = InMemoryRecordStore()
    wrong_ct, _ = credentials.encrypt("Decoy")
    right_ct, secret = credentials.encrypt("Real Person")
    token = credentials.lookup_hash(secret)
    # Same lookup hash, sealed under another key: must be skipped, not fatal.
    store.create(IdentityRecord(id=0, encrypted_name=wrong_ct, lookup_hash=token))
    real_id = store.create(IdentityRecord(id=0, encrypted_name=right_ct, lookup_hash=token, cohort="2016"))

    identity, record_id = CandidateResolver(store).resolve(secret)

    assert record_id == real_id
    assert identity.name == "Real Person"


def test_resolve_not_found_when_nothing_authenticates():
    store = InMemoryRecordStore()
    register(store, Identity(name="Someone"))
    _, unused = credentials.encrypt("x")
    with pytest.raises(NotFound):
        CandidateResolver(store).resolve(unused)


def test_resolve_malformed_secret_is_bad_key():
    with pytest.raises(BadKey):
        CandidateResolver(InMemoryRecordStore()).resolve("hello there")


def test_resolve_corrupt_record_aborts_with_bad_ciphertext():
    store = InMemoryRecordStore()
    _, secret = credentials.encrypt("x")
    store.create(IdentityRecord(id=0, encrypted_name="nothex", lookup_hash=credentials.lookup_hash(secret)))
    with pytest.raises(BadCiphertext):
        CandidateResolver(store).resolve(secret)


def test_resolve_record_leaves_ciphertext_untouched():
    store = InMemoryRecordStore()
    record_id, secret = register(store, Identity(name="Kept Sealed", cohort=PRE_CORE))
    record = CandidateResolver(store).resolve_record(secret)
    assert record == store.find_by_id(record_id)


def test_in_memory_store_write_paths_raise_not_found():
    store = InMemoryRecordStore()
    record_id, _ = register(store, Identity(name="A"))
    store.update_cohort(record_id, "2030")
    assert store.find_by_id(record_id).cohort == "2030"
    store.update(replace(store.find_by_id(record_id), ta=True))
    assert store.find_by_id(record_id).ta is True
    store.delete(record_id)
    for op in (
        lambda: store.find_by_id(record_id),
        lambda: store.delete(record_id),
        lambda: store.update_cohort(record_id, "2031"),
        lambda: store.update(IdentityRecord(id=record_id, encrypted_name="", lookup_hash="")),
    ):
        with pytest.raises(NotFound):
            op()

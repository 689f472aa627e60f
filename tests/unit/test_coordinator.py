"""Unit tests for the viewer lifecycle coordinator."""

from datetime import timedelta

import pytest

from ephemeral_notes.coordinator import (
    TERMINAL_STATES,
    USER_MESSAGES,
    KeySource,
    LifecycleCoordinator,
    ViewState,
)
from ephemeral_notes.crypto import MessageCipher, export_key, generate_root_key
from ephemeral_notes.errors import (
    DecryptionError,
    ErrorKind,
    MissingKeyError,
    RecordExpiredError,
    RecordNotFoundError,
    StorageError,
)
from ephemeral_notes.identity import StaticIdentity
from ephemeral_notes.locator import Locator, build_share_url
from ephemeral_notes.models import Record

BASE_URL = "https://notes.example"


@pytest.fixture
def coordinator(records, vault, clock, fast_iterations):
    return LifecycleCoordinator(records, vault, iterations=fast_iterations, clock=clock)


@pytest.fixture
def stored(records, sealed, clock):
    """Store a sealed record: ``stored(text, **fields) -> (record, key_text)``."""

    def _stored(text="hello", **fields):
        fields.setdefault("created_at", clock())
        record, key_text = sealed(text, **fields)
        return records.put(record), key_text

    return _stored


def link(record_id, key_text):
    return Locator(build_share_url(BASE_URL, record_id, key_text))


class FragmentlessVault:
    """Vault double that only answers for the canonical record id."""

    def __init__(self, canonical_id, key_text):
        self.canonical_id = canonical_id
        self.key_text = key_text
        self.requests = []

    def get(self, message_id):
        self.requests.append(message_id)
        return self.key_text if message_id == self.canonical_id else None

    def put(self, message_id, key_text):
        pass


class TestSuccessfulView:
    """Tests for views that end in DONE."""

    def test_view_from_link(self, coordinator, stored):
        record, key_text = stored("meet at noon", max_views=2)
        locator = link(record.id, key_text)

        outcome = coordinator.view(locator=locator)

        assert outcome.ok
        assert outcome.state is ViewState.DONE
        assert outcome.plaintext == "meet at noon"
        assert outcome.key_source is KeySource.FRAGMENT
        assert outcome.record.current_views == 1
        assert outcome.error is None
        assert outcome.expiry_info == "This message will be deleted after 1 more view."

    def test_state_path(self, coordinator, stored):
        record, key_text = stored()
        outcome = coordinator.view(locator=link(record.id, key_text))
        assert outcome.path == [
            ViewState.IDLE,
            ViewState.RESOLVING,
            ViewState.RESOLVING_KEY,
            ViewState.DECRYPTING,
            ViewState.DECRYPTED,
            ViewState.CONSUMING,
            ViewState.DONE,
        ]

    def test_view_counted_in_store(self, coordinator, records, stored):
        record, key_text = stored(max_views=3)
        coordinator.view(locator=link(record.id, key_text))
        assert records.get(record.id).current_views == 1

    def test_fragment_cleared_after_success(self, coordinator, stored):
        record, key_text = stored()
        locator = link(record.id, key_text)
        coordinator.view(locator=locator)
        assert not locator.has_fragment
        assert locator.url == f"{BASE_URL}/view/{record.id}"

    def test_fragment_key_cached_in_vault(self, coordinator, vault, stored):
        record, key_text = stored(max_views=2)
        coordinator.view(locator=link(record.id, key_text))
        assert vault.get(record.id) == key_text

    def test_last_view_key_not_cached(self, coordinator, vault, stored):
        """A fragment key is not kept for a message this view used up."""
        record, key_text = stored(max_views=1)
        assert coordinator.view(locator=link(record.id, key_text)).ok
        assert vault.get(record.id) is None
        assert vault.count() == 0

    def test_key_caching_can_be_disabled(self, records, vault, clock, stored, fast_iterations):
        coordinator = LifecycleCoordinator(
            records, vault, iterations=fast_iterations, clock=clock, cache_keys=False
        )
        record, key_text = stored(max_views=2)
        coordinator.view(locator=link(record.id, key_text))
        assert vault.get(record.id) is None

    def test_key_from_vault(self, coordinator, vault, stored):
        """Without a fragment the sender's stored key is used."""
        record, key_text = stored()
        vault.put(record.id, key_text)
        outcome = coordinator.view(record.id)
        assert outcome.ok
        assert outcome.key_source is KeySource.VAULT

    def test_truncated_link(self, coordinator, stored):
        """A link whose id was cut to 20 characters still opens."""
        record, key_text = stored("truncated")
        outcome = coordinator.view(locator=link(record.id[:20], key_text))
        assert outcome.plaintext == "truncated"
        assert outcome.record.id == record.id

    def test_expiry_info_for_last_view(self, coordinator, stored):
        record, key_text = stored(max_views=1)
        outcome = coordinator.view(locator=link(record.id, key_text))
        assert outcome.expiry_info == "This message will be deleted after this view."

    def test_expiry_info_for_time_limit(self, coordinator, stored, clock):
        expires = clock() + timedelta(hours=1)
        record, key_text = stored(expires_at=expires)
        outcome = coordinator.view(locator=link(record.id, key_text))
        assert outcome.expiry_info == f"This message will expire on {expires.isoformat()}."

    def test_no_expiry_info_without_limits(self, coordinator, stored):
        record, key_text = stored()
        outcome = coordinator.view(locator=link(record.id, key_text))
        assert outcome.expiry_info is None

    def test_diagnostics_recorded(self, coordinator, stored):
        record, key_text = stored()
        outcome = coordinator.view(locator=link(record.id, key_text))
        assert outcome.diagnostics
        assert any("Key found via fragment" in str(d) for d in outcome.diagnostics)

    def test_raise_for_state_is_noop_on_success(self, coordinator, stored):
        record, key_text = stored()
        coordinator.view(locator=link(record.id, key_text)).raise_for_state()


class TestFailedView:
    """Tests for each failure terminal state."""

    def test_not_found(self, coordinator, new_id):
        outcome = coordinator.view(new_id())
        assert outcome.state is ViewState.NOT_FOUND
        assert outcome.error_kind is ErrorKind.NOT_FOUND
        assert outcome.error == USER_MESSAGES[ViewState.NOT_FOUND]
        assert outcome.plaintext is None

    @pytest.mark.parametrize("message_id", [None, ""])
    def test_no_id(self, coordinator, message_id):
        assert coordinator.view(message_id).state is ViewState.NOT_FOUND

    def test_link_without_view_segment(self, coordinator):
        outcome = coordinator.view(locator=Locator(f"{BASE_URL}/other#key"))
        assert outcome.state is ViewState.NOT_FOUND

    def test_corrupt_record_is_storage_failure(self, coordinator, storage, new_id):
        record_id = new_id()
        storage.records.put(record_id, {"id": record_id})
        outcome = coordinator.view(record_id)
        assert outcome.state is ViewState.NOT_FOUND
        assert outcome.error_kind is ErrorKind.STORAGE_FAILURE

    def test_expired_by_time(self, coordinator, records, vault, stored, clock):
        """An expired record is deleted along with its keys."""
        record, key_text = stored(expires_at=clock() + timedelta(minutes=5))
        vault.put(record.id, key_text)
        clock.advance(minutes=6)

        outcome = coordinator.view(locator=link(record.id, key_text))

        assert outcome.state is ViewState.EXPIRED
        assert outcome.error_kind is ErrorKind.EXPIRED
        assert records.find(record.id) is None
        assert vault.count() == 0

    def test_second_view_of_single_view_message(self, coordinator, stored):
        record, key_text = stored(max_views=1)
        assert coordinator.view(locator=link(record.id, key_text)).ok

        outcome = coordinator.view(locator=link(record.id, key_text))
        assert outcome.state is ViewState.EXPIRED
        assert outcome.plaintext is None

    def test_missing_key(self, coordinator, records, stored):
        record, _key_text = stored()
        outcome = coordinator.view(record.id)
        assert outcome.state is ViewState.MISSING_KEY
        assert outcome.error_kind is ErrorKind.MISSING_KEY
        assert records.get(record.id).current_views == 0

    def test_wrong_key(self, coordinator, records, vault, stored):
        """A wrong key never counts a view, caches, or clears the fragment."""
        record, _key_text = stored()
        locator = link(record.id, export_key(generate_root_key()))

        outcome = coordinator.view(locator=locator)

        assert outcome.state is ViewState.DECRYPT_FAILED
        assert outcome.error_kind is ErrorKind.DECRYPTION_FAILED
        assert outcome.error == USER_MESSAGES[ViewState.DECRYPT_FAILED]
        assert records.get(record.id).current_views == 0
        assert vault.get(record.id) is None
        assert locator.has_fragment

    def test_malformed_key(self, coordinator, stored):
        record, _key_text = stored()
        outcome = coordinator.view(locator=link(record.id, "not-a-key!"))
        assert outcome.state is ViewState.DECRYPT_FAILED
        assert outcome.error_kind is ErrorKind.INVALID_KEY_FORMAT

    def test_corrupt_ciphertext(self, coordinator, records, clock, new_id):
        record = records.put(Record(id=new_id(), ciphertext="c2hvcnQ", created_at=clock()))
        outcome = coordinator.view(locator=link(record.id, export_key(generate_root_key())))
        assert outcome.state is ViewState.DECRYPT_FAILED
        assert outcome.error_kind is ErrorKind.INVALID_CIPHERTEXT

    def test_fragment_read_only_once(self, coordinator, stored):
        """Retrying with the same location does not reread the fragment."""
        record, _key_text = stored()
        locator = link(record.id, export_key(generate_root_key()))
        assert coordinator.view(locator=locator).state is ViewState.DECRYPT_FAILED
        assert coordinator.view(locator=locator).state is ViewState.MISSING_KEY

    def test_failure_states_are_terminal(self, coordinator, new_id):
        outcome = coordinator.view(new_id())
        assert outcome.state in TERMINAL_STATES
        assert outcome.path[-1] is outcome.state

    @pytest.mark.parametrize(
        "fields, error_cls",
        [
            ({}, MissingKeyError),
            ({"max_views": 0}, RecordExpiredError),
        ],
    )
    def test_raise_for_state(self, coordinator, stored, fields, error_cls):
        record, _key_text = stored(**fields)
        with pytest.raises(error_cls):
            coordinator.view(record.id).raise_for_state()

    def test_raise_for_state_not_found(self, coordinator, new_id):
        with pytest.raises(RecordNotFoundError):
            coordinator.view(new_id()).raise_for_state()

    def test_raise_for_state_decrypt_failed(self, coordinator, stored):
        record, _key_text = stored()
        outcome = coordinator.view(locator=link(record.id, export_key(generate_root_key())))
        with pytest.raises(DecryptionError):
            outcome.raise_for_state()

    def test_consume_failure_propagates(self, coordinator, storage, stored):
        """If the view cannot be recorded the plaintext is withheld."""
        record, key_text = stored()

        def fail(key, value):
            raise StorageError("disk full")

        storage.records.put = fail
        with pytest.raises(StorageError):
            coordinator.view(locator=link(record.id, key_text))


class TestIdentityGatedKeys:
    """Tests for stored-key access through the identity collaborator."""

    @pytest.fixture
    def setup(self, records, stored, clock, fast_iterations):
        record, key_text = stored(owner_id="alice")
        records.share(record.id, "bob")
        vault = FragmentlessVault(record.id, key_text)

        def view_as(user_id):
            coordinator = LifecycleCoordinator(
                records,
                vault,
                identity=StaticIdentity(user_id),
                iterations=fast_iterations,
                clock=clock,
            )
            return coordinator.view(record.id.upper())

        return view_as, vault, record

    @pytest.mark.parametrize("user_id", ["alice", "bob"])
    def test_owner_and_shared_user_get_key(self, setup, user_id):
        view_as, vault, record = setup
        outcome = view_as(user_id)
        assert outcome.ok
        assert outcome.key_source is KeySource.SHARED
        assert vault.requests == [record.id.upper(), record.id]

    def test_unrelated_user_is_refused(self, setup):
        view_as, vault, record = setup
        outcome = view_as("carol")
        assert outcome.state is ViewState.MISSING_KEY
        assert vault.requests == [record.id.upper()]

    def test_anonymous_viewer_is_refused(self, setup):
        view_as, vault, _record = setup
        assert view_as(None).state is ViewState.MISSING_KEY


class TestConcurrentViews:
    """Two attempts on the same record, the second running while the first decrypts."""

    @pytest.fixture
    def interleaved(self, coordinator, stored, monkeypatch):
        """Run a competing view from inside the first attempt's decrypt."""

        def _interleaved(max_views):
            record, key_text = stored("only for one reader", max_views=max_views)
            real_open = MessageCipher.open
            started, competing = [], []

            def open_after_competing_view(cipher, sealed):
                if not started:
                    started.append(True)
                    competing.append(coordinator.view(locator=link(record.id, key_text)))
                return real_open(cipher, sealed)

            monkeypatch.setattr(MessageCipher, "open", open_after_competing_view)
            first = coordinator.view(locator=link(record.id, key_text))
            return record, first, competing[0]

        return _interleaved

    def test_view_once_shown_to_one_viewer(self, interleaved, records):
        record, first, competing = interleaved(max_views=1)

        assert competing.state is ViewState.DONE
        assert competing.plaintext == "only for one reader"
        assert first.state is ViewState.EXPIRED
        assert first.error_kind is ErrorKind.EXPIRED
        assert first.plaintext is None
        assert first.path[-2:] == [ViewState.CONSUMING, ViewState.EXPIRED]
        assert records.find(record.id) is None

    def test_both_viewers_counted_when_views_remain(self, interleaved, records):
        record, first, competing = interleaved(max_views=3)

        assert competing.ok
        assert first.ok
        assert first.plaintext == "only for one reader"
        assert first.record.current_views == 2
        assert records.get(record.id).current_views == 2

"""
End-to-end tests for the interactive session: onboarding, menus, caching and persistence.
"""
import os
import sys
import pytest
import yaml
from datetime import date
from unittest.mock import patch

# Add parent directory to path to import times_cli
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from times_cli import (
    KNOWN_TOPICS,
    KeyValueStore,
    MSG_INVALID_KEY,
    MSG_INVALID_SELECTION,
    MSG_REMOTE_FAILED,
    StoreError,
    main,
)

TODAY = date(2024, 5, 1)
WORLD = str(KNOWN_TOPICS.index("world") + 1)
RESET_KEY = str(len(KNOWN_TOPICS) + 1)
SET_LIMIT = str(len(KNOWN_TOPICS) + 2)
EXIT = str(len(KNOWN_TOPICS) + 3)


def read_store(path):
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def run_session(tmp_path, prompter, fetcher, clock=lambda: TODAY):
    config = {"storage": {"path": str(tmp_path / "store.yml")}}
    main(config=config, prompter=prompter, fetcher=fetcher, clock=clock)
    return prompter.stdout.getvalue()


class TestOnboarding:
    """Test first-run API key acquisition."""

    def test_prompts_until_valid_key(self, tmp_path, make_prompter, stub_fetcher, api_key):
        """Test that invalid keys are rejected and the valid one is persisted."""
        prompter = make_prompter("not-a-key", api_key, EXIT)

        output = run_session(tmp_path, prompter, stub_fetcher())

        assert output.count(MSG_INVALID_KEY) == 1
        assert "Key saved." in output
        assert "developer.nytimes.com" in output
        assert read_store(tmp_path / "store.yml")["api_key"] == api_key

    def test_saved_key_skips_onboarding(self, tmp_path, make_prompter, stub_fetcher, api_key):
        (tmp_path / "store.yml").write_text(f"api_key: {api_key}\n", encoding="utf-8")
        prompter = make_prompter(EXIT)

        output = run_session(tmp_path, prompter, stub_fetcher())

        assert "API Key:" not in output
        assert "Exiting..." in output

    def test_reset_key(self, tmp_path, make_prompter, stub_fetcher, api_key):
        """Test that the reset menu item replaces the stored key."""
        new_key = "Z" * 32
        (tmp_path / "store.yml").write_text(f"api_key: {api_key}\n", encoding="utf-8")
        prompter = make_prompter(RESET_KEY, new_key, EXIT)

        run_session(tmp_path, prompter, stub_fetcher())

        assert read_store(tmp_path / "store.yml")["api_key"] == new_key


class TestSectionBrowsing:
    """Test fetching, caching and browsing a section from the main menu."""

    def test_view_section_caches_and_persists(self, tmp_path, make_prompter, stub_fetcher, make_listing, api_key):
        """Test that a fetched listing is browsed and written to the store."""
        listing = make_listing(["First", "Second", "Third"])
        fetcher = stub_fetcher((200, listing.encode("utf-8")))
        prompter = make_prompter(api_key, WORLD, "1", "4", EXIT)

        output = run_session(tmp_path, prompter, fetcher)

        assert fetcher.calls == [("world", api_key)]
        assert "Abstract for First." in output
        data = read_store(tmp_path / "store.yml")
        assert data["section.world.last_fetch"] == "2024-05-01"
        assert data["section.world.listing"] == listing

    def test_same_day_reuses_cache_within_session(self, tmp_path, make_prompter, stub_fetcher, make_listing, api_key):
        fetcher = stub_fetcher((200, make_listing(["A"]).encode("utf-8")))
        prompter = make_prompter(api_key, WORLD, "2", WORLD, "2", EXIT)

        run_session(tmp_path, prompter, fetcher)

        assert len(fetcher.calls) == 1

    def test_same_day_reuses_cache_across_runs(self, tmp_path, make_prompter, stub_fetcher, make_listing, api_key):
        """Test that freshness is date-based, so a new process on the same day does not refetch."""
        fetcher = stub_fetcher((200, make_listing(["A"]).encode("utf-8")))
        run_session(tmp_path, make_prompter(api_key, WORLD, "2", EXIT), fetcher)

        second_fetcher = stub_fetcher()
        output = run_session(tmp_path, make_prompter(WORLD, "2", EXIT), second_fetcher)

        assert second_fetcher.calls == []
        assert "\t1. A" in output

    def test_next_day_refetches(self, tmp_path, make_prompter, stub_fetcher, make_listing, api_key):
        run_session(tmp_path, make_prompter(api_key, WORLD, "2", EXIT),
                    stub_fetcher((200, make_listing(["Old"]).encode("utf-8"))))

        fetcher = stub_fetcher((200, make_listing(["New"]).encode("utf-8")))
        output = run_session(tmp_path, make_prompter(WORLD, "2", EXIT), fetcher,
                             clock=lambda: date(2024, 5, 2))

        assert len(fetcher.calls) == 1
        assert "\t1. New" in output
        assert read_store(tmp_path / "store.yml")["section.world.last_fetch"] == "2024-05-02"

    def test_remote_error_reported_and_nothing_cached(self, tmp_path, make_prompter, stub_fetcher, api_key):
        """Test that a non-200 response is reported with its status and not cached."""
        prompter = make_prompter(api_key, WORLD, EXIT)

        output = run_session(tmp_path, prompter, stub_fetcher((401, b"")))

        assert MSG_REMOTE_FAILED in output
        assert "Response Code: 401" in output
        assert "section.world.listing" not in read_store(tmp_path / "store.yml")

    def test_fetch_error_reported(self, tmp_path, make_prompter, stub_fetcher, api_key):
        from times_cli import FetchError
        prompter = make_prompter(api_key, WORLD, EXIT)

        output = run_session(tmp_path, prompter, stub_fetcher(FetchError("Request for world timed out")))

        assert "Unable to reach the Top Stories API" in output
        assert "timed out" in output

    def test_unreadable_cached_listing_reported(self, tmp_path, make_prompter, stub_fetcher, api_key):
        """Test that a corrupted same-day cache entry is reported instead of crashing."""
        (tmp_path / "store.yml").write_text(
            f"api_key: {api_key}\n"
            "section.world.last_fetch: '2024-05-01'\n"
            "section.world.listing: 'garbage'\n",
            encoding="utf-8",
        )
        prompter = make_prompter(WORLD, EXIT)

        output = run_session(tmp_path, prompter, stub_fetcher())

        assert "could not be read" in output


class TestMenus:
    """Test main menu handling and settings commands."""

    def test_main_menu_lists_topics_and_commands(self, tmp_path, make_prompter, stub_fetcher, api_key):
        prompter = make_prompter(api_key, EXIT)

        output = run_session(tmp_path, prompter, stub_fetcher())

        assert f"\t{WORLD}. World" in output
        assert f"\t{RESET_KEY}. Reset API Key" in output
        assert f"\t{SET_LIMIT}. Set Display Limit" in output
        assert f"\t{EXIT}. Exit" in output

    def test_invalid_main_menu_selection(self, tmp_path, make_prompter, stub_fetcher, api_key):
        prompter = make_prompter(api_key, "0", "abc", "999", EXIT)

        output = run_session(tmp_path, prompter, stub_fetcher())

        assert output.count(MSG_INVALID_SELECTION) == 3

    def test_set_display_limit(self, tmp_path, make_prompter, stub_fetcher, make_listing, api_key):
        """Test that the limit is validated, persisted and applied to the browser."""
        fetcher = stub_fetcher((200, make_listing(["First", "Second", "Third"]).encode("utf-8")))
        prompter = make_prompter(api_key, SET_LIMIT, "x", "-2", "2", WORLD, "3", EXIT)

        output = run_session(tmp_path, prompter, fetcher)

        assert output.count("Invalid limit.") == 2
        assert "Display limit set to 2." in output
        assert "\t3. Back" in output
        assert "Third" not in output
        assert read_store(tmp_path / "store.yml")["display_limit"] == "2"


class TestPersistenceOnExit:
    """Test that the store is saved on every way out of the session."""

    def test_end_of_input_persists(self, tmp_path, make_prompter, stub_fetcher, api_key):
        """Test that running out of input still saves the acquired key."""
        prompter = make_prompter(api_key)

        output = run_session(tmp_path, prompter, stub_fetcher())

        assert "Exiting..." in output
        assert read_store(tmp_path / "store.yml")["api_key"] == api_key

    def test_corrupt_store_is_fatal_and_untouched(self, tmp_path, make_prompter, stub_fetcher):
        """Test that an unreadable store stops the program without overwriting it."""
        path = tmp_path / "store.yml"
        path.write_text("api_key: [broken\n", encoding="utf-8")

        with pytest.raises(StoreError):
            run_session(tmp_path, make_prompter(), stub_fetcher())

        assert path.read_text(encoding="utf-8") == "api_key: [broken\n"

    def test_fresh_fetch_is_saved_before_exit(self, tmp_path, make_prompter, stub_fetcher, make_listing, api_key):
        """Test that a fetched listing reaches disk while the session is still running."""
        listing = make_listing(["First"])
        prompter = make_prompter(api_key, WORLD, "2", EXIT)
        original_save = KeyValueStore.save
        snapshots = []

        def recording_save(store):
            original_save(store)
            snapshots.append(("Exiting..." in prompter.stdout.getvalue(), read_store(store.path)))

        with patch.object(KeyValueStore, "save", autospec=True, side_effect=recording_save):
            run_session(tmp_path, prompter, stub_fetcher((200, listing.encode("utf-8"))))

        assert len(snapshots) == 2
        exited, data = snapshots[0]
        assert exited is False
        assert data["section.world.listing"] == listing
        assert data["section.world.last_fetch"] == "2024-05-01"

    def test_cached_view_waits_for_exit_to_save(self, tmp_path, make_prompter, stub_fetcher, make_listing, api_key):
        """Test that serving from cache does not rewrite the store mid-session."""
        listing = make_listing(["First"])
        (tmp_path / "store.yml").write_text(
            yaml.safe_dump({
                "api_key": api_key,
                "section.world.last_fetch": "2024-05-01",
                "section.world.listing": listing,
            }),
            encoding="utf-8",
        )
        prompter = make_prompter(WORLD, "2", EXIT)

        with patch.object(KeyValueStore, "save", autospec=True, side_effect=KeyValueStore.save) as mock_save:
            run_session(tmp_path, prompter, stub_fetcher())

        assert mock_save.call_count == 1

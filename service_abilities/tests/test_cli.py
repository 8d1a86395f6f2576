"""
Unit tests for the command-line interface.
"""

import pytest
from unittest.mock import AsyncMock, patch

from service_abilities import cli
from service_abilities.app.cleanup import CleanupService


@pytest.fixture
def cleanup(repository):
    """Create a cleanup service over the test repository."""
    return CleanupService(repository)


@pytest.fixture
def stale(repository, conductor, user):
    """Seed one orphaned ability and one ability with a missing model."""
    async def seed():
        account = repository.create_entity("account")
        await conductor.allow(user, ["ban-users", "kick-users"])
        await conductor.allow(user, "update", account)
        await conductor.disallow(user, "kick-users")
        repository.delete_entity(account)

    return seed


class TestClean:
    """Test cases for the clean command."""

    @pytest.mark.asyncio
    async def test_both_passes(self, cleanup, stale):
        """Without flags one line is written per pass."""
        await stale()
        lines = []

        exit_code = await cli.clean(cleanup, write=lines.append)

        assert exit_code == 0
        assert lines == ["Deleted 1 orphaned ability.", "Deleted 1 ability with a missing model."]

    @pytest.mark.asyncio
    async def test_nothing_to_clean(self, cleanup):
        """Empty storage reports both passes as clean."""
        lines = []

        assert await cli.clean(cleanup, write=lines.append) == 0
        assert lines == ["No orphaned abilities.", "No abilities with missing models."]

    @pytest.mark.asyncio
    async def test_missing_only(self, cleanup, stale, repository):
        """--missing leaves orphans alone."""
        await stale()
        lines = []

        await cli.clean(cleanup, missing=True, write=lines.append)

        assert lines == ["Deleted 1 ability with a missing model."]
        assert await repository.count_abilities() == 2

    @pytest.mark.asyncio
    async def test_failed_pass_does_not_block_the_other(self, cleanup, stale, repository):
        """A failing missing-model pass still lets the orphaned pass finish."""
        await stale()
        repository.existing_entity_ids = AsyncMock(side_effect=RuntimeError("connection lost"))
        lines = []

        exit_code = await cli.clean(cleanup, write=lines.append)

        assert exit_code == 1
        assert lines == [
            "Deleted 1 orphaned ability.",
            "Missing model cleanup failed: connection lost",
        ]
        assert await repository.count_abilities() == 2


class TestArguments:
    """Test cases for argument parsing."""

    def test_clean_flags(self):
        args = cli._parse_args(["clean", "--orphaned", "--tenant", "t1"])

        assert args.command == "clean"
        assert args.orphaned is True
        assert args.missing is False
        assert args.tenant == "t1"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli._parse_args([])

    def test_main_runs_clean(self):
        """main dispatches to the clean command and returns its exit code."""
        with patch.object(cli, "_run_clean", AsyncMock(return_value=0)) as run_clean:
            assert cli.main(["clean", "--missing"]) == 0

        args = run_clean.await_args.args[0]
        assert args.missing is True
        assert args.orphaned is False

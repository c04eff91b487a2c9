import pytest
from pydantic import SecretStr
from structlog.testing import capture_logs

from bulkfetch.config import SourceClientSettings
from bulkfetch.engine.resolver import IdentifierResolver
from bulkfetch.exceptions import HashingError, ResourceNotFoundError

from conftest import TEST_ITERATIONS, TEST_PEPPER_HEX


@pytest.mark.asyncio
async def test_resolve_single_match(source, resolver):
    source.add_patient("1S00E00AA00", "-19990000000001")

    patient = await resolver.resolve_patient("1S00E00AA00")

    assert patient.resource_type == "Patient"
    assert patient.id == "-19990000000001"
    assert await resolver.resolve_patient_id("1S00E00AA00") == "-19990000000001"


@pytest.mark.asyncio
async def test_only_the_hash_is_sent_to_the_source(source, resolver):
    source.add_patient("1S00E00AA00")

    await resolver.resolve_patient("1S00E00AA00")

    assert source.identifier_hashes == [resolver.hash_identifier("1S00E00AA00")]
    assert "1S00E00AA00" not in source.identifier_hashes


@pytest.mark.asyncio
async def test_no_match_is_not_found(source, resolver):
    with pytest.raises(ResourceNotFoundError):
        await resolver.resolve_patient("1S00E00AA00")


@pytest.mark.asyncio
async def test_multiple_matches_are_not_found(source, resolver):
    source.add_patient("1S00E00AA00", "-1")
    source.add_patient("1S00E00AA00", "-2")

    with pytest.raises(ResourceNotFoundError):
        await resolver.resolve_patient("1S00E00AA00")


@pytest.mark.asyncio
async def test_multiple_matches_logged_apart_from_no_match(source, resolver):
    source.add_patient("1S00E00AA00", "-1")
    source.add_patient("1S00E00AA00", "-2")

    with capture_logs() as multiple_logs:
        with pytest.raises(ResourceNotFoundError):
            await resolver.resolve_patient("1S00E00AA00")
    with capture_logs() as missing_logs:
        with pytest.raises(ResourceNotFoundError):
            await resolver.resolve_patient("1S00E00BB11")

    multiple = [e for e in multiple_logs if e["event"] == "Multiple patients match MBI"]
    assert len(multiple) == 1
    assert multiple[0]["log_level"] == "error"
    assert multiple[0]["matches"] == 2
    assert not [e for e in missing_logs if e["event"] == "Multiple patients match MBI"]


@pytest.mark.asyncio
async def test_patient_without_id_is_not_found(source, resolver):
    source.add_patient("1S00E00AA00", "")

    with pytest.raises(ResourceNotFoundError):
        await resolver.resolve_patient_id("1S00E00AA00")


@pytest.mark.asyncio
async def test_from_settings_uses_configured_pepper(source):
    settings = SourceClientSettings(
        hash_pepper=SecretStr(TEST_PEPPER_HEX),
        hash_iterations=TEST_ITERATIONS,
    )
    source.add_patient("1S00E00AA00", "-1")

    resolver = IdentifierResolver.from_settings(source, settings)

    assert await resolver.resolve_patient_id("1S00E00AA00") == "-1"


def test_from_settings_without_pepper_fails(source):
    with pytest.raises(HashingError):
        IdentifierResolver.from_settings(source, SourceClientSettings(hash_pepper=None))

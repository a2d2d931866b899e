import pytest

from services.byok import SystemCredentials
from services.credit_types import ByokConfigurationError, CredentialInvalidError, DebitOutcome
from services.wallets import load_wallet, locked_wallet


async def _flags(session_maker, user_id):
    async with session_maker() as session:
        wallet = await load_wallet(session, user_id)
        return bool(wallet.use_own_keys), bool(wallet.keys_valid)


async def _new_wallet(session_maker, make_ledger, user_id):
    async with session_maker() as session:
        await make_ledger(session).get_or_create_wallet(user_id)


@pytest.mark.asyncio
async def test_resolve_falls_back_to_system_credentials(session_maker, make_ledger, make_vault):
    async with session_maker() as session:
        vault = make_vault(session)
        missing = await vault.resolve_credential("nobody", "places")
        assert missing.credential == "system-places-key"
        assert missing.is_user_supplied is False

    await _new_wallet(session_maker, make_ledger, "user-keys")
    async with session_maker() as session:
        vault = make_vault(session)
        await vault.save_credentials("user-keys", places_key="user-places-key", enable=False)
        stored_but_disabled = await vault.resolve_credential("user-keys", "places")
        assert stored_but_disabled.credential == "system-places-key"


@pytest.mark.asyncio
async def test_enabled_wallet_uses_user_key_only_where_stored(session_maker, make_ledger, make_vault):
    await _new_wallet(session_maker, make_ledger, "user-partial")
    async with session_maker() as session:
        vault = make_vault(session)
        status = await vault.save_credentials("user-partial", places_key="user-places-key", enable=True)
        assert status.use_own_keys is True
        assert status.keys_valid is True
        assert status.has_places_key is True
        assert status.has_generation_key is False

        places = await vault.resolve_credential("user-partial", "places")
        assert places.credential == "user-places-key"
        assert places.is_user_supplied is True

        generation = await vault.resolve_credential("user-partial", "generation")
        assert generation.credential == "system-generation-key"
        assert generation.is_user_supplied is False


@pytest.mark.asyncio
async def test_stored_keys_are_encrypted(session_maker, make_ledger, make_vault):
    await _new_wallet(session_maker, make_ledger, "user-cipher")
    async with session_maker() as session:
        await make_vault(session).save_credentials("user-cipher", generation_key="user-generation-key")

    async with session_maker() as session:
        wallet = await load_wallet(session, "user-cipher")
        assert wallet.generation_api_key_encrypted
        assert "user-generation-key" not in wallet.generation_api_key_encrypted


@pytest.mark.asyncio
async def test_enable_requires_a_stored_key(session_maker, make_ledger, make_vault):
    await _new_wallet(session_maker, make_ledger, "user-empty")
    async with session_maker() as session:
        with pytest.raises(ByokConfigurationError):
            await make_vault(session).set_enabled("user-empty", True)
    assert await _flags(session_maker, "user-empty") == (False, False)


@pytest.mark.asyncio
async def test_enable_is_all_or_nothing(session_maker, make_ledger, make_vault, accepted_keys):
    await _new_wallet(session_maker, make_ledger, "user-mixed-keys")
    async with session_maker() as session:
        await make_vault(session).save_credentials(
            "user-mixed-keys",
            places_key="user-places-key",
            generation_key="user-generation-key",
        )

    accepted_keys["generation"].clear()
    async with session_maker() as session:
        with pytest.raises(CredentialInvalidError) as exc_info:
            await make_vault(session).set_enabled("user-mixed-keys", True)
    assert exc_info.value.providers == ["generation"]
    assert await _flags(session_maker, "user-mixed-keys") == (False, True)

    accepted_keys["generation"].add("user-generation-key")
    async with session_maker() as session:
        status = await make_vault(session).set_enabled("user-mixed-keys", True)
    assert status.use_own_keys is True
    assert status.provider_validity == {"places": True, "generation": True}
    assert await _flags(session_maker, "user-mixed-keys") == (True, True)


@pytest.mark.asyncio
async def test_invalid_key_is_never_stored(session_maker, make_ledger, make_vault):
    await _new_wallet(session_maker, make_ledger, "user-typo")
    async with session_maker() as session:
        with pytest.raises(CredentialInvalidError) as exc_info:
            await make_vault(session).save_credentials("user-typo", places_key="wrong-key", enable=True)
    assert exc_info.value.providers == ["places"]

    async with session_maker() as session:
        status = await make_vault(session).status("user-typo")
    assert status.has_places_key is False
    assert status.use_own_keys is False


@pytest.mark.asyncio
async def test_disable_keeps_keys_but_charges_again(session_maker, make_ledger, make_vault):
    await _new_wallet(session_maker, make_ledger, "user-toggle")
    async with session_maker() as session:
        await make_vault(session).save_credentials("user-toggle", places_key="user-places-key", enable=True)

    async with session_maker() as session:
        status = await make_vault(session).set_enabled("user-toggle", False)
    assert status.use_own_keys is False
    assert status.has_places_key is True

    async with session_maker() as session:
        result = await make_ledger(session).debit("user-toggle", "google_search")
    assert result.outcome is DebitOutcome.CHARGED


@pytest.mark.asyncio
async def test_remove_last_key_disables_byok(session_maker, make_ledger, make_vault):
    await _new_wallet(session_maker, make_ledger, "user-remove")
    async with session_maker() as session:
        await make_vault(session).save_credentials("user-remove", places_key="user-places-key", enable=True)

    async with session_maker() as session:
        status = await make_vault(session).remove_credentials("user-remove", "places")
    assert status.has_places_key is False
    assert status.use_own_keys is False
    assert status.keys_valid is False

    async with session_maker() as session:
        with pytest.raises(ByokConfigurationError):
            await make_vault(session).remove_credentials("user-remove", "everything")


@pytest.mark.asyncio
async def test_verify_switches_revoked_keys_back_to_credits(session_maker, make_ledger, make_vault, accepted_keys):
    await _new_wallet(session_maker, make_ledger, "user-verify")
    async with session_maker() as session:
        await make_vault(session).save_credentials("user-verify", generation_key="user-generation-key", enable=True)

    async with session_maker() as session:
        still_good = await make_vault(session).verify_and_switch("user-verify")
    assert still_good["switched_to_credits"] is False
    assert still_good["keys_valid"] is True

    accepted_keys["generation"].clear()
    async with session_maker() as session:
        revoked = await make_vault(session).verify_and_switch("user-verify")
    assert revoked["switched_to_credits"] is True
    assert revoked["provider_validity"] == {"generation": False}
    assert await _flags(session_maker, "user-verify") == (False, False)


@pytest.mark.asyncio
async def test_unreadable_stored_key_falls_back(session_maker, make_ledger, make_vault):
    await _new_wallet(session_maker, make_ledger, "user-corrupt")
    async with session_maker() as session:
        async with locked_wallet(session, "user-corrupt") as wallet:
            wallet.places_api_key_encrypted = "not-a-fernet-token"
            wallet.use_own_keys = True
            wallet.keys_valid = True

    async with session_maker() as session:
        resolved = await make_vault(session).resolve_credential("user-corrupt", "places")
    assert resolved.is_user_supplied is False
    assert resolved.credential == "system-places-key"


def test_system_credentials_reject_unknown_provider():
    credentials = SystemCredentials(places="p", generation="g")
    assert credentials.for_provider("generation") == "g"
    with pytest.raises(ValueError):
        credentials.for_provider("fax")

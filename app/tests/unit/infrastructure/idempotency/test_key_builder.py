import pytest

from infrastructure.idempotency import IdempotencyKeyBuilder

pytestmark = pytest.mark.unit


def test_key_is_independent_of_component_order():
    builder = IdempotencyKeyBuilder(namespace="delivery")

    first = builder.build("attempt", notification_id="n-1", device_token_id="t-1", epoch=1)
    second = builder.build("attempt", epoch=1, device_token_id="t-1", notification_id="n-1")

    assert first == second
    assert first.startswith("delivery:attempt:")
    assert len(first.rsplit(":", 1)[1]) == 16


def test_namespaces_do_not_collide():
    components = {"user_id": "u-1", "token": "abc"}

    assert IdempotencyKeyBuilder("a").digest("op", **components) != IdempotencyKeyBuilder(
        "b"
    ).digest("op", **components)


def test_digest_length_is_configurable():
    assert len(IdempotencyKeyBuilder("device_token", digest_length=32).digest("register", x=1)) == 32


def test_empty_namespace_is_rejected():
    with pytest.raises(ValueError):
        IdempotencyKeyBuilder("")

from card_consensus.config import ConsensusConfig, DataFormat, required_margin
import pytest


@pytest.mark.parametrize(
    ("voters", "expected"),
    [(0, 2), (1, 2), (3, 2), (6, 2), (7, 3), (8, 3), (9, 3), (10, 4)],
)
def test_required_margin(voters: int, expected: int) -> None:
    assert required_margin(voters) == expected


def test_required_margin_uses_config_terms() -> None:
    config = ConsensusConfig(margin_floor=1, margin_divisor=2)

    assert required_margin(1, config) == 1
    assert required_margin(5, config) == 3


def test_required_margin_rejects_negative_total() -> None:
    with pytest.raises(ValueError):
        required_margin(-1)


def test_defaults() -> None:
    config = ConsensusConfig()

    assert config.voter_timeout_ms == 5000
    assert config.voter_timeout_s == pytest.approx(5.0)
    assert config.max_turn_steps == 20
    assert config.data_format is DataFormat.TOON
    assert config.skip_single_legal_action is True


def test_data_format_is_normalized() -> None:
    assert ConsensusConfig(data_format=" Mixed ").data_format is DataFormat.MIXED


@pytest.mark.parametrize(
    ("field", "value", "error"),
    [
        ("voter_timeout_ms", 0, ValueError),
        ("max_turn_steps", -1, ValueError),
        ("margin_divisor", 1.5, TypeError),
        ("margin_floor", True, TypeError),
        ("skip_single_legal_action", "yes", TypeError),
        ("skip_single_legal_action", 1, TypeError),
    ],
)
def test_invalid_values(field: str, value: object, error: type[Exception]) -> None:
    with pytest.raises(error):
        ConsensusConfig(**{field: value})  # type: ignore[arg-type]


def test_unknown_data_format() -> None:
    with pytest.raises(ValueError):
        ConsensusConfig(data_format="xml")

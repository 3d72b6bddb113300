"""Command codec tests: encoding, tolerant decoding and revision grammars."""

import pytest

from dbsctrl.protocol import (
    LED_TOGGLE_COMMAND,
    ControlState,
    FormatError,
    ProtocolRevision,
    decode,
    encode,
    parse_frame,
)

CURRENT = ProtocolRevision.CURRENT
LEGACY = ProtocolRevision.LEGACY


def test_encode_defaults():
    """Default state encodes every current field in fixed order."""
    assert encode(ControlState()) == "_A0,F130,P90,G0,N0"


def test_encode_values():
    state = ControlState(
        amplitude=55,
        frequency_hz=145,
        pulse_duration_us=300,
        activate_on_disconnect=True,
        cap_id=7,
    )
    assert encode(state, CURRENT) == "_A55,F145,P300,G1,N7"


def test_encode_legacy_uses_microamps_and_drops_cap():
    state = ControlState.defaults(LEGACY)
    state.amplitude = 55
    state.cap_id = 42
    assert encode(state, LEGACY) == "_A1650,F130,P50,G0"


def test_encode_does_not_clamp():
    with pytest.raises(ValueError, match="frequency_hz"):
        encode(ControlState(frequency_hz=200))

    with pytest.raises(ValueError, match="pulse_duration_us"):
        encode(ControlState(pulse_duration_us=50), CURRENT)


def test_encode_battery_is_never_sent():
    state = ControlState(battery_percent=80)
    assert "V" not in encode(state)


@pytest.mark.parametrize(
    "revision,state",
    [
        (
            CURRENT,
            ControlState(
                amplitude=100,
                frequency_hz=80,
                pulse_duration_us=600,
                activate_on_disconnect=True,
                cap_id=99,
            ),
        ),
        (CURRENT, ControlState(amplitude=0, frequency_hz=160, cap_id=0)),
        (
            LEGACY,
            ControlState(amplitude=37, frequency_hz=125, pulse_duration_us=10),
        ),
    ],
)
def test_round_trip(revision, state):
    """decode(encode(state)) restores every field of the revision."""
    result = decode(encode(state, revision), revision)

    assert result.valid
    restored = ControlState.defaults(revision)
    restored.apply(result.updates)
    for spec in revision.grammar.fields:
        assert getattr(restored, spec.name) == getattr(state, spec.name)


def test_decode_skips_malformed_segment():
    result = decode("_A100,ZZZ,F130")

    assert result.valid
    assert result.error is None
    assert result.updates == {"amplitude": 100, "frequency_hz": 130}
    assert result.skipped == ("ZZZ",)


def test_decode_rejects_missing_prefix():
    result = decode("A100,F130")

    assert not result.valid
    assert isinstance(result.error, FormatError)
    assert result.updates == {}


def test_parse_frame_raises_format_error():
    with pytest.raises(FormatError):
        parse_frame("A100,F130")

    assert parse_frame("_F90") == {"frequency_hz": 90}


def test_decode_short_and_empty_segments():
    assert decode("_A,,F130,").updates == {"frequency_hz": 130}
    assert decode("_").updates == {}


def test_decode_non_numeric_values():
    result = decode("_A1x,F-5,F+5,P 90,A")
    assert result.valid
    assert result.updates == {}


def test_decode_unknown_tags():
    """Tags from newer or older firmware are skipped without error."""
    result = decode("_X5,A10,L1,Q77")
    assert result.updates == {"amplitude": 10}


def test_decode_drops_out_of_range_values():
    result = decode("_F200,A101,N100,P60,G2")
    assert result.updates == {}


def test_decode_activate_flag():
    assert decode("_G1").updates == {"activate_on_disconnect": True}
    assert decode("_G0").updates == {"activate_on_disconnect": False}


def test_decode_battery_maps_to_percent():
    assert decode("_V2100").updates == {"battery_percent": 50}
    assert decode("_V5000").updates == {"battery_percent": 100}


def test_decode_legacy_grammar():
    result = decode("_A1500,F100,P20,G0,N12,V2100", LEGACY)

    assert result.updates == {
        "amplitude": 50,
        "frequency_hz": 100,
        "pulse_duration_us": 20,
        "activate_on_disconnect": False,
    }
    assert result.skipped == ("N12", "V2100")


def test_decode_legacy_amplitude_out_of_range():
    assert decode("_A3001", LEGACY).updates == {}
    assert decode("_A3000", LEGACY).updates == {"amplitude": 100}


def test_apply_is_partial_and_idempotent():
    state = ControlState(frequency_hz=100, cap_id=3)
    updates = decode("_A20,N12").updates

    assert sorted(state.apply(updates)) == ["amplitude", "cap_id"]
    assert state.frequency_hz == 100
    assert state.apply(updates) == []
    assert state.amplitude == 20
    assert state.cap_id == 12


def test_cap_id_text_is_two_digits():
    assert ControlState(cap_id=7).cap_id_text == "07"
    assert ControlState(cap_id=42).cap_id_text == "42"


def test_revision_tags():
    assert CURRENT.grammar.tags == ("A", "F", "P", "G", "N", "V")
    assert LEGACY.grammar.tags == ("A", "F", "P", "G")
    assert LEGACY.grammar.fixed_payload_length == 26
    assert CURRENT.grammar.request_commands == ("_1", "_2")


def test_led_command():
    assert LED_TOGGLE_COMMAND == "_L1"
    assert decode(LED_TOGGLE_COMMAND).updates == {}

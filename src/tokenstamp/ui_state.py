"""Plain-dict snapshot of a session for toolbar renderers."""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List

from .hp import HP_MODES, format_hp_summary, parse_static_hp, read_hp_base
from .transform import format_mirror_summary

if TYPE_CHECKING:
    from .session import PlacementSession

_HP_MODE_LABELS = {
    "inherit": "Entity preset",
    "formula": "Roll formula",
    "percent": "Percent jitter",
    "static": "Custom value",
}


def _format_degrees(value: float) -> str:
    rounded = round(value, 1)
    text = str(int(rounded)) if rounded == int(rounded) else f"{rounded:.1f}"
    return f"{text}°"


def _hints(session: "PlacementSession") -> List[str]:
    state = session.state
    hints = ["Click to place", "Ctrl+Wheel to rotate", "Esc to cancel"]
    if not state.sticky:
        hints.insert(1, "Shift+Click to keep placing")
    if state.mode.value == "random":
        hints.append(f"Random pool: {len(state.pool)} tokens")
    return hints


def _binding_state(session: "PlacementSession") -> Dict[str, Any]:
    binding = session.binding
    catalog = session.catalog
    supported, append_default, prepend_default = binding.naming_defaults()
    append = binding.append_number_override if binding.append_number_override is not None else append_default
    prepend = (
        binding.prepend_adjective_override if binding.prepend_adjective_override is not None else prepend_default
    )
    selection = binding.active_selection()
    return {
        "options": binding.display_list(),
        "selected_id": binding.selection_id,
        "search": binding.search,
        "linked": binding.linked,
        "linked_disabled": not selection.is_entity,
        "loading": catalog.loading,
        "load_error": catalog.load_error,
        "excluded_pack_count": len(catalog.excluded_pack_ids),
        "packs": catalog.available_packs(),
        "naming": {
            "supported": supported,
            "append_number": append,
            "prepend_adjective": prepend,
        },
    }


def _formula_available(session: "PlacementSession") -> bool:
    entity = session.binding.peek_entity(session.binding.active_selection())
    if entity is None:
        return bool(session.state.hp_params.formula)
    base = read_hp_base(entity.data, session.profile)
    return bool(base and base.formula)


def _hp_state(session: "PlacementSession") -> Dict[str, Any]:
    state = session.state
    params = state.hp_params
    parsed = parse_static_hp(params.static_value)
    formula_ok = _formula_available(session)
    return {
        "mode": state.hp_mode,
        "summary": format_hp_summary(
            state.hp_mode, percent=params.percent, static_value=params.static_value, static_parsed=parsed
        ),
        "mode_options": [
            {
                "value": mode,
                "label": _HP_MODE_LABELS[mode],
                "selected": mode == state.hp_mode,
                "disabled": mode == "formula" and not formula_ok,
            }
            for mode in HP_MODES
        ],
        "percent": params.percent,
        "percent_max": session.config.hp.max_percent,
        "static_value": params.static_value,
        "static_error": parsed.reason if state.hp_mode == "static" else "",
    }


def build_ui_state(session: "PlacementSession") -> Dict[str, Any]:
    state = session.state
    if not state.active:
        return {"active": False, "hp": _hp_state(session)}

    transform = state.transform
    pending = state.pending
    rotation = pending.rotation_deg if pending is not None else transform.rotation_base_deg
    mirror_h = pending.mirror_h if pending is not None else transform.mirror_h
    mirror_v = pending.mirror_v if pending is not None else transform.mirror_v
    entry = state.current_entry
    return {
        "active": True,
        "token": state.token,
        "phase": state.phase.value,
        "mode": state.mode.value,
        "sticky": state.sticky,
        "entry": {
            "identity_key": entry.identity_key,
            "display_name": entry.display_name or entry.filename,
            "cached": bool(entry.cached_local_path),
        } if entry is not None else None,
        "hints": _hints(session),
        "rotation": {
            "value": transform.rotation_base_deg,
            "display": _format_degrees(rotation),
            "random_enabled": transform.rotation_random_enabled,
            "strength": transform.rotation_random_strength_deg,
            "strength_max": session.config.rotation.max_random_strength_deg,
        },
        "mirror": {
            "horizontal": transform.mirror_h,
            "vertical": transform.mirror_v,
            "random_h": transform.mirror_random_h,
            "random_v": transform.mirror_random_v,
            "summary": format_mirror_summary(mirror_h, mirror_v),
        },
        "binding": _binding_state(session),
        "hp": _hp_state(session),
        "grid_snap": bool(getattr(session.scene, "grid_snap_enabled", False)),
    }

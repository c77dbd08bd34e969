from __future__ import annotations

from typing import Any

from layers.types import LayerDescriptor, StylingRule

# Per-state opacity boosts on top of the base opacity.
_SELECTED_BOOST = 0.25
_HIGHLIGHT_BOOST = 0.15
_HOVER_BOOST = 0.1


def _state(flag: str) -> list[Any]:
    return ["boolean", ["feature-state", flag], False]


def _state_case(
    *,
    selected: Any,
    highlighted: Any,
    hovered: Any,
    dimmed: Any,
    base: Any,
    dimming: bool,
) -> list[Any]:
    """
    Feature-state precedence: selected > highlighted > hovered > dimmed > base.

    Highlight is checked before the filter-match branch, so a highlighted feature that fails
    the active filter is still drawn highlighted.
    """
    expr: list[Any] = [
        "case",
        _state("selected"),
        selected,
        _state("highlighted"),
        highlighted,
        _state("hovered"),
        hovered,
    ]
    if dimming:
        expr += [["!", _state("filterMatch")], dimmed]
    expr.append(base)
    return expr


def _clamp01(v: float) -> float:
    return round(max(0.0, min(1.0, float(v))), 4)


def _opacity_case(base: float, opacity: float, rule: StylingRule, dimming: bool) -> list[Any]:
    return _state_case(
        selected=_clamp01((base + _SELECTED_BOOST) * opacity),
        highlighted=_clamp01((base + _HIGHLIGHT_BOOST) * opacity),
        hovered=_clamp01((base + _HOVER_BOOST) * opacity),
        dimmed=_clamp01(base * rule.dim_factor * opacity),
        base=_clamp01(base * opacity),
        dimming=dimming,
    )


def base_color(rule: StylingRule) -> Any:
    if rule.gradient:
        # step: gradient[0] below thresholds[1], gradient[i] from thresholds[i] upwards.
        expr: list[Any] = ["step", ["coalesce", ["get", "_diameter"], 0], rule.gradient[0]]
        for threshold, color in zip(rule.thresholds[1:], rule.gradient[1:]):
            expr += [threshold, color]
        return expr
    if rule.color_property:
        return ["coalesce", ["get", rule.color_property], rule.color]
    return rule.color


def _color_case(rule: StylingRule, base: Any, dimming: bool) -> list[Any]:
    return _state_case(
        selected=rule.selected_color,
        highlighted=rule.highlight_color,
        hovered=base,
        dimmed=base,
        base=base,
        dimming=dimming,
    )


def _width_case(width: float, dimming: bool) -> list[Any]:
    return _state_case(
        selected=width + 2.0,
        highlighted=width + 2.0,
        hovered=width + 1.0,
        dimmed=width,
        base=width,
        dimming=dimming,
    )


def native_layer_ids(descriptor: LayerDescriptor) -> list[str]:
    """
    Native layer ids for a logical layer, bottom -> top.
    """
    k = descriptor.key
    kind = descriptor.geometry_kind
    if kind == "fill":
        ids = [f"{k}-fill", f"{k}-outline"]
    elif kind == "line":
        ids = [f"{k}-line"]
    else:
        ids = [f"{k}-circle"]
    if descriptor.styling_rule.label_property:
        ids.append(f"{k}-label")
    return ids


def interactive_layer_id(descriptor: LayerDescriptor) -> str:
    return native_layer_ids(descriptor)[0]


def opacity_paint(
    descriptor: LayerDescriptor, layer_id: str, *, opacity: float, dimming: bool
) -> dict[str, Any]:
    """
    Paint properties of `layer_id` that depend on layer opacity or dimming.
    """
    rule = descriptor.styling_rule
    suffix = layer_id[len(descriptor.key) + 1 :]
    if suffix == "fill":
        return {"fill-opacity": _opacity_case(rule.opacity, opacity, rule, dimming)}
    if suffix in ("outline", "line"):
        return {"line-opacity": _opacity_case(rule.line_opacity, opacity, rule, dimming)}
    if suffix == "circle":
        return {
            "circle-opacity": _opacity_case(rule.opacity, opacity, rule, dimming),
            "circle-stroke-opacity": _opacity_case(rule.opacity, opacity, rule, dimming),
        }
    if suffix == "label":
        return {"text-opacity": _opacity_case(1.0, opacity, rule, dimming)}
    raise KeyError(f"Unknown native layer {layer_id!r} for {descriptor.key!r}")


def build_layer_specs(
    descriptor: LayerDescriptor, *, visible: bool, opacity: float, dimming: bool = False
) -> list[dict[str, Any]]:
    """
    Native layer specs (bottom -> top) for one logical layer; all share the source `descriptor.key`.
    """
    rule = descriptor.styling_rule
    color = base_color(rule)
    outline = rule.outline_color or rule.color
    visibility = "visible" if visible else "none"

    out: list[dict[str, Any]] = []
    for layer_id in native_layer_ids(descriptor):
        suffix = layer_id[len(descriptor.key) + 1 :]
        spec: dict[str, Any] = {
            "id": layer_id,
            "source": descriptor.key,
            "layout": {"visibility": visibility},
        }
        if suffix == "fill":
            spec["type"] = "fill"
            spec["paint"] = {"fill-color": _color_case(rule, color, dimming)}
        elif suffix == "outline":
            spec["type"] = "line"
            spec["paint"] = {
                "line-color": _color_case(rule, outline, dimming),
                "line-width": _width_case(rule.line_width, dimming),
            }
            if rule.line_dasharray:
                spec["paint"]["line-dasharray"] = list(rule.line_dasharray)
        elif suffix == "line":
            spec["type"] = "line"
            spec["layout"].update({"line-join": "round", "line-cap": "round"})
            spec["paint"] = {
                "line-color": _color_case(rule, color, dimming),
                "line-width": _width_case(rule.line_width, dimming),
            }
            if rule.line_dasharray:
                spec["paint"]["line-dasharray"] = list(rule.line_dasharray)
        elif suffix == "circle":
            spec["type"] = "circle"
            spec["paint"] = {
                "circle-color": _color_case(rule, color, dimming),
                "circle-radius": _state_case(
                    selected=rule.circle_radius + 3.0,
                    highlighted=rule.circle_radius + 2.0,
                    hovered=rule.circle_radius + 1.0,
                    dimmed=rule.circle_radius,
                    base=rule.circle_radius,
                    dimming=dimming,
                ),
                "circle-stroke-color": "#ffffff",
                "circle-stroke-width": 2,
            }
        else:
            spec["type"] = "symbol"
            spec["layout"].update(
                {
                    "text-field": ["get", rule.label_property],
                    "text-size": 12,
                    "text-allow-overlap": False,
                }
            )
            spec["paint"] = {
                "text-color": outline,
                "text-halo-color": "#ffffff",
                "text-halo-width": 1.5,
            }
        spec["paint"].update(opacity_paint(descriptor, layer_id, opacity=opacity, dimming=dimming))
        out.append(spec)
    return out


def dimming_paint(descriptor: LayerDescriptor, layer_id: str, *, opacity: float, dimming: bool) -> dict[str, Any]:
    """
    Every state-aware paint property of `layer_id`, rebuilt for a new dimming mode.
    """
    for spec in build_layer_specs(descriptor, visible=True, opacity=opacity, dimming=dimming):
        if spec["id"] == layer_id:
            return {k: v for k, v in spec["paint"].items() if isinstance(v, list) and v[:1] == ["case"]}
    raise KeyError(f"Unknown native layer {layer_id!r} for {descriptor.key!r}")

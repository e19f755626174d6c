"""Plain-text rendering of a review pack for the terminal."""

from __future__ import annotations

import jinja2

from cartmerge.cart.diff import describe_diff
from cartmerge.models.review import ReviewPack

REVIEW_TEMPLATE = """\
Review pack for run {{ pack.run_id }}
Generated {{ pack.generated_at.strftime("%Y-%m-%d %H:%M") }} UTC

Orders merged (oldest first):
{% for order in pack.original_orders %}  - {{ order.order_id }}  {{ order.date }}  {{ "%.2f"|format(order.total) }}
{% else %}  (none)
{% endfor %}
Cart: {{ pack.stats.total_items }} line(s), total {{ "%.2f"|format(diff.summary.cart_total) }} \
(was {{ "%.2f"|format(diff.summary.original_total) }})
Changes: {{ summary }}
{% if diff.removed %}
Missing from cart:
{% for item in diff.removed %}  - {{ item.name }} x{{ item.quantity }}
{% endfor %}{% endif %}
{%- if diff.now_unavailable %}
Unavailable:
{% for item in diff.now_unavailable %}  - {{ item.name }} ({{ item.availability.value }})
{% endfor %}{% endif %}
{%- if diff.price_changed %}
Price changes:
{% for change in diff.price_changed %}  - {{ change.item.name }}: {{ "%.2f"|format(change.original_price) }} -> {{ "%.2f"|format(change.new_price) }}
{% endfor %}{% endif %}
{%- if pack.substitutions %}
Proposed substitutes:
{% for p in pack.substitutions %}  - {{ p.original_item.name }} -> {{ p.substitute.name }} \
({{ "%.2f"|format(p.substitute.price) }}, {{ p.reason }})
{% endfor %}{% endif %}
Delivery:
{% if rec and rec.recommended %}{% for slot in rec.recommended %}  {{ loop.index }}. {{ slot.date }} {{ slot.time_start }}-{{ slot.time_end }}  \
fee {{ "%.2f"|format(slot.fee) }}  score {{ slot.score }}  {{ slot.reason }}
{% endfor %}{% else %}  no available slot
{% endif %}
Confidence: {{ "%.0f"|format(pack.confidence.overall * 100) }}% \
(availability {{ pack.confidence.availability_percent }}%)
{% if pack.confidence.requires_attention %}Needs attention:
{% for reason in pack.confidence.attention_reasons %}  - {{ reason }}
{% endfor %}{% endif %}"""

_env = jinja2.Environment(undefined=jinja2.StrictUndefined, keep_trailing_newline=True)


def render_review(pack: ReviewPack) -> str:
    """Render *pack* as a plain-text report."""
    template = _env.from_string(REVIEW_TEMPLATE)
    return template.render(
        pack=pack,
        diff=pack.cart_diff,
        rec=pack.slot_recommendation,
        summary=describe_diff(pack.cart_diff),
    )

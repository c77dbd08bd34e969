from __future__ import annotations

EVENT_COLUMNS = (
    "ts_ms",
    "layer_key",
    "outcome",
    "filter_signature",
    "view_zoom",
    "west",
    "south",
    "east",
    "north",
    "total_ms",
    "features",
    "stats_json",
)

CREATE_EVENTS_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS fetch_events (
  ts_ms BIGINT,
  layer_key TEXT,
  outcome TEXT,
  filter_signature TEXT,
  view_zoom DOUBLE,
  west DOUBLE,
  south DOUBLE,
  east DOUBLE,
  north DOUBLE,
  total_ms DOUBLE,
  features BIGINT,
  stats_json TEXT
);
"""

INSERT_EVENTS_SQL = (
    f"INSERT INTO fetch_events ({', '.join(EVENT_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in EVENT_COLUMNS)})"
)

# Per layer: volume, failures and latency percentiles.
SUMMARY_SQL_TEMPLATE = """
SELECT
  layer_key,
  COUNT(*),
  COUNT(*) FILTER (WHERE outcome = 'failed'),
  AVG(total_ms),
  quantile_cont(total_ms, 0.50),
  quantile_cont(total_ms, 0.95),
  AVG(features)
FROM fetch_events
{where_sql}
GROUP BY layer_key
ORDER BY layer_key
"""

SLOWEST_SQL_TEMPLATE = """
SELECT ts_ms, layer_key, outcome, total_ms, features, view_zoom
FROM fetch_events
WHERE {where_sql}
ORDER BY total_ms DESC
LIMIT ?
"""

"""In-memory stand-in for the parts of the Elasticsearch client the app uses.

It evaluates the subset of the query DSL the query translator emits, which
is enough to run searches and aggregations end to end in tests.
"""

from __future__ import annotations

import copy
import math
from types import SimpleNamespace

from elasticsearch import ApiError, ConflictError, NotFoundError
from elasticsearch import ConnectionError as ESConnectionError


def _api_error(cls, status, message):
    return cls(message, meta=SimpleNamespace(status=status), body={"error": {"reason": message}})


def _field_path(field):
    field = field.split("^", 1)[0]
    if field.endswith(".keyword"):
        field = field[: -len(".keyword")]
    return field


def values_at(source, field):
    current = [source]
    for part in _field_path(field).split("."):
        found = []
        for value in current:
            if isinstance(value, dict) and part in value:
                found.append(value[part])
        current = []
        for value in found:
            if isinstance(value, list):
                current.extend(value)
            elif value is not None:
                current.append(value)
    return current


def _tokens(text):
    return [token for token in str(text).lower().replace("-", " ").split() if token]


def _text_score(query_text, values, boost=1.0):
    wanted = _tokens(query_text)
    haystack = " ".join(str(value).lower() for value in values)
    return sum(boost for token in wanted if token in haystack)


def _in_range(value, bounds):
    if value is None:
        return False
    checks = {
        "gte": lambda limit: value >= limit,
        "gt": lambda limit: value > limit,
        "lte": lambda limit: value <= limit,
        "lt": lambda limit: value < limit,
    }
    return all(checks[op](limit) for op, limit in bounds.items() if op in checks)


def evaluate(query, source):
    """Return a score (> 0) when the document matches, otherwise None."""
    if not query:
        return 1.0
    kind, params = next(iter(query.items()))
    if kind == "match_all":
        return 1.0
    if kind == "term":
        field, expected = next(iter(params.items()))
        if isinstance(expected, dict):
            expected = expected.get("value")
        return 1.0 if expected in values_at(source, field) else None
    if kind == "terms":
        field, expected = next(iter(params.items()))
        present = values_at(source, field)
        return 1.0 if any(value in present for value in expected) else None
    if kind == "range":
        field, bounds = next(iter(params.items()))
        return 1.0 if any(_in_range(value, bounds) for value in values_at(source, field)) else None
    if kind == "match":
        field, options = next(iter(params.items()))
        text = options.get("query") if isinstance(options, dict) else options
        score = _text_score(text, values_at(source, field))
        return score or None
    if kind == "multi_match":
        score = 0.0
        for field in params.get("fields", []):
            boost = float(field.split("^", 1)[1]) if "^" in field else 1.0
            score += _text_score(params["query"], values_at(source, field), boost)
        return score or None
    if kind == "nested":
        path = params["path"]
        best = None
        for element in values_at(source, path):
            score = evaluate(params["query"], {path: element})
            if score is not None:
                best = max(best or 0.0, score)
        return best
    if kind == "bool":
        return _evaluate_bool(params, source)
    raise ValueError(f"Unsupported query in fake Elasticsearch: {kind}")


def _evaluate_bool(params, source):
    score = 0.0
    for clause in params.get("must", []):
        result = evaluate(clause, source)
        if result is None:
            return None
        score += result
    for clause in params.get("filter", []):
        if evaluate(clause, source) is None:
            return None
    for clause in params.get("must_not", []):
        if evaluate(clause, source) is not None:
            return None
    should = params.get("should", [])
    if should:
        matched = [evaluate(clause, source) for clause in should]
        matched = [result for result in matched if result is not None]
        required = params.get("minimum_should_match")
        if required is None:
            required = 0 if params.get("must") or params.get("filter") else 1
        if len(matched) < required:
            return None
        score += sum(matched)
    return score or 1.0


def _sort_key(hit, sort):
    key = []
    for clause in sort:
        field, options = next(iter(clause.items()))
        descending = options.get("order", "asc") == "desc"
        if field == "_score":
            value = hit["_score"]
        else:
            found = values_at(hit["_source"], field)
            value = found[0] if found else None
        # Missing values sort last in both directions.
        if value is None:
            key.append((1, 0))
        elif isinstance(value, (int, float)):
            key.append((0, -value if descending else value))
        else:
            key.append((0, _Reversed(value) if descending else value))
    return key


class _Reversed:
    def __init__(self, value):
        self.value = value

    def __lt__(self, other):
        return self.value > other.value

    def __eq__(self, other):
        return self.value == other.value


def _aggregate(params, sources):
    results = {}
    for name, agg in params.items():
        sub_aggs = agg.get("aggs", {})
        if "terms" in agg:
            field = agg["terms"]["field"]
            counts = {}
            for source in sources:
                for value in set(values_at(source, field)):
                    counts[value] = counts.get(value, 0) + 1
            ordered = sorted(counts.items(), key=lambda item: (-item[1], str(item[0])))
            results[name] = {
                "buckets": [
                    {"key": key, "doc_count": count}
                    for key, count in ordered[: agg["terms"].get("size", 10)]
                ]
            }
        elif "nested" in agg:
            path = agg["nested"]["path"]
            elements = [{path: element} for source in sources for element in values_at(source, path)]
            results[name] = {"doc_count": len(elements), **_aggregate(sub_aggs, elements)}
        elif "stats" in agg:
            numbers = [
                value
                for source in sources
                for value in values_at(source, agg["stats"]["field"])
                if isinstance(value, (int, float))
            ]
            results[name] = {
                "count": len(numbers),
                "min": min(numbers) if numbers else None,
                "max": max(numbers) if numbers else None,
                "avg": sum(numbers) / len(numbers) if numbers else None,
                "sum": float(sum(numbers)),
            }
        elif "histogram" in agg:
            field = agg["histogram"]["field"]
            interval = agg["histogram"]["interval"]
            counts = {}
            for source in sources:
                for value in values_at(source, field):
                    if isinstance(value, (int, float)):
                        key = math.floor(value / interval) * interval
                        counts[key] = counts.get(key, 0) + 1
            results[name] = {
                "buckets": [{"key": key, "doc_count": counts[key]} for key in sorted(counts)]
            }
        else:
            raise ValueError(f"Unsupported aggregation in fake Elasticsearch: {name}")
    return results


class _FakeIndices:
    def __init__(self, es):
        self._es = es

    def exists(self, index):
        self._es.calls.append(("indices.exists", index))
        return index in self._es.indexes

    def create(self, index, mappings=None, **kwargs):
        self._es.calls.append(("indices.create", index))
        self._es.check_writable()
        if index in self._es.indexes:
            raise _api_error(ApiError, 400, f"index [{index}] already exists")
        self._es.indexes[index] = {}
        self._es.mappings[index] = mappings
        self._es.settings[index] = {}

    def delete(self, index):
        self._es.calls.append(("indices.delete", index))
        if index not in self._es.indexes:
            raise _api_error(NotFoundError, 404, f"no such index [{index}]")
        del self._es.indexes[index]
        self._es.mappings.pop(index, None)
        self._es.settings.pop(index, None)

    def refresh(self, index):
        self._es.calls.append(("indices.refresh", index))
        self._es.require_index(index)

    def put_settings(self, index, settings):
        self._es.calls.append(("indices.put_settings", index))
        self._es.require_index(index)
        self._es.settings[index].update(settings.get("index", settings))


class FakeElasticsearch:
    def __init__(self):
        self.indexes = {}
        self.mappings = {}
        self.settings = {}
        self.versions = {}
        self.calls = []
        self.indices = _FakeIndices(self)
        self.fail_writes = False
        self.fail_search = False
        self.failing_bulk_calls = set()
        self.rejected_ids = set()
        self.bulk_calls = []
        self.reachable = True

    def require_index(self, index):
        if index not in self.indexes:
            raise _api_error(NotFoundError, 404, f"no such index [{index}]")
        return self.indexes[index]

    def ping(self):
        return self.reachable

    def documents(self, index="products"):
        return self.indexes.get(index, {})

    def check_writable(self):
        if self.fail_writes:
            raise ESConnectionError("Connection refused")

    def index(self, index, id, document, version=None, version_type=None, **kwargs):
        self.calls.append(("index", id))
        self.check_writable()
        docs = self.indexes.setdefault(index, {})
        if version_type == "external_gte":
            current = self.versions.get((index, id))
            if current is not None and version < current:
                raise _api_error(ConflictError, 409, f"[{id}]: version conflict")
            self.versions[(index, id)] = version
        docs[id] = copy.deepcopy(document)
        return {"_id": id, "result": "updated"}

    def delete(self, index, id, **kwargs):
        self.calls.append(("delete", id))
        self.check_writable()
        docs = self.indexes.get(index, {})
        if id not in docs:
            raise _api_error(NotFoundError, 404, f"document [{id}] missing")
        del docs[id]
        self.versions.pop((index, id), None)
        return {"_id": id, "result": "deleted"}

    def bulk(self, operations, refresh=None, **kwargs):
        call_number = len(self.bulk_calls) + 1
        self.bulk_calls.append({"operations": operations, "refresh": refresh})
        self.check_writable()
        if call_number in self.failing_bulk_calls:
            raise ESConnectionError("Connection reset during bulk request")
        items = []
        for action, document in zip(operations[::2], operations[1::2]):
            meta = action["index"]
            doc_id = meta["_id"]
            if doc_id in self.rejected_ids:
                items.append(
                    {
                        "index": {
                            "_id": doc_id,
                            "status": 400,
                            "error": {
                                "type": "mapper_parsing_exception",
                                "reason": "failed to parse field [priceUSD]",
                            },
                        }
                    }
                )
                continue
            self.indexes.setdefault(meta["_index"], {})[doc_id] = copy.deepcopy(document)
            items.append({"index": {"_id": doc_id, "status": 201, "result": "created"}})
        return {"errors": any("error" in item["index"] for item in items), "items": items}

    def count(self, index):
        return {"count": len(self.require_index(index))}

    def search(self, index, body):
        self.calls.append(("search", body))
        if self.fail_search:
            raise ESConnectionError("Connection refused")
        docs = self.require_index(index)
        hits = []
        for doc_id, source in docs.items():
            score = evaluate(body.get("query"), source)
            if score is not None:
                hits.append({"_id": doc_id, "_score": score, "_source": copy.deepcopy(source)})
        sort = body.get("sort")
        if sort:
            hits.sort(key=lambda hit: _sort_key(hit, sort))
        start = body.get("from", 0)
        size = body.get("size", 10)
        response = {
            "hits": {
                "total": {"value": len(hits), "relation": "eq"},
                "hits": hits[start : start + size],
            }
        }
        if body.get("aggs"):
            response["aggregations"] = _aggregate(body["aggs"], [hit["_source"] for hit in hits])
        return response

import json
import sys
from pathlib import Path


def _cell(metrics: dict, key: str) -> str:
    value = metrics.get(key)
    return f"{value:.6f}" if isinstance(value, (int, float)) else "-"


def main() -> None:
    metrics_path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("metrics.json")
    data = json.loads(metrics_path.read_text())

    meta = data.pop("meta", {})
    top_n = meta.get("top_n", 10)
    users = meta.get("users", "unknown")
    items = meta.get("items", "unknown")
    relevant_users = meta.get("users_with_relevant_items", "unknown")

    rating_rows = [
        f"| {name} | {_cell(m, 'rmse')} | {_cell(m, 'mae')} |"
        for name, m in data.items()
        if "rmse" in m
    ]
    cutoffs = sorted({1, min(5, top_n), top_n})
    keys = [f"ndcg@{n}" for n in cutoffs] + [f"precision@{top_n}", f"recall@{top_n}"]
    ranking_header = " | ".join(key.upper() if key.startswith("ndcg") else key.capitalize() for key in keys)
    ranking_rows = [
        f"| {name} | " + " | ".join(_cell(m, key) for key in keys) + " |"
        for name, m in data.items()
        if f"ndcg@{top_n}" in m
    ]

    md = f"""# Evaluation Results

- Dataset: **{meta.get("dataset", "unknown")}**
- Users: **{users}**, items: **{items}**
- Users with relevant test items: **{relevant_users}**

## Rating prediction

| Method | RMSE | MAE |
|---|---:|---:|
{chr(10).join(rating_rows)}

## Top-N ranking

| Method | {ranking_header} |
|---|{"---:|" * len(keys)}
{chr(10).join(ranking_rows)}

## Notes
- Split: per-user, first ratings in file order go to train
- Ordinal methods report the expectation; `most_likely_*` keys hold the mode
- NDCG averages only over users with at least one relevant test item
"""

    Path("metrics.md").write_text(md)
    print("Wrote metrics.md")


if __name__ == "__main__":
    main()

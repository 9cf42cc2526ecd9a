from ordrec.config import load_app_config
from ordrec.evaluation.runner import run_and_save
from ordrec.experiment import prepare_numerical, run_global_mean, run_most_popular
from ordrec.logging_utils import configure_logger


def main() -> None:
    configure_logger("ordrec")
    app_config = load_app_config()

    context = prepare_numerical(app_config)
    reports = [run_global_mean(context), run_most_popular(context)]

    metrics = run_and_save(
        reports,
        output_path=str(app_config.evaluation.output_path),
        meta={
            "dataset": str(app_config.dataset.path),
            "users": context.r_train.user_count,
            "items": context.r_train.item_count,
            "top_n": context.top_n,
            "users_with_relevant_items": len(context.relevant_items_by_user),
        },
    )

    print(f"Wrote {app_config.evaluation.output_path}")
    print(metrics)


if __name__ == "__main__":
    main()

# main.py
import argparse
import logging
import os
import sys

import config
from fisherface.exceptions import FisherfaceError
from fisherface.metrics import (
    calculate_confidence_intervals, compare_variants, compute_recognition_metrics,
    print_metrics_summary, save_metrics_to_json
)
from fisherface.preprocessing import (
    ManifestWriter, compute_dataset_statistics, print_dataset_statistics
)
from fisherface.recognition import evaluate_manifest, recognize
from fisherface.training import Trainer

logger = logging.getLogger("fisherface")


def run_train(args):
    trainer = Trainer(args.manifest, args.model)
    trainer.load_images()
    if config.VERBOSE:
        print_dataset_statistics(compute_dataset_statistics(trainer.dataset))

    model = trainer.run()
    logger.info("Database created: %s", args.model)

    print(f"\nDatabase created: {args.model}")
    print(f"- Images: {model.n_images}")
    print(f"- Classes: {model.n_classes}")
    print(f"- PCA components: {model.n_lda_eigens}")
    print(f"- Fisherfaces: {model.n_fisherfaces}")
    print(f"- Euclidean threshold: {model.euclidean_threshold:.6g}")
    return 0


def run_recognize(args):
    result = recognize(args.image, args.model, variant=args.variant)

    if result.accepted:
        print(f"Found: {result.person_name} (class {result.class_id})")
    else:
        print("Could not find person")
    print(f"Distance: {result.distance:.6g}")
    print(f"Threshold: {result.threshold:.6g}")
    return 0


def run_evaluate(args):
    variants = [args.variant] if args.variant else config.VARIANTS
    results = evaluate_manifest(args.manifest, args.model, variants=variants)

    all_metrics = []
    for variant, rows in results.items():
        y_true = [row["expected_id"] for row in rows]
        y_pred = [row["predicted_id"] for row in rows]

        metrics = compute_recognition_metrics(y_true, y_pred)
        metrics["confidence_interval"] = calculate_confidence_intervals(y_true, y_pred)

        print_metrics_summary(metrics, f"Variant: {variant}")
        save_metrics_to_json(metrics, os.path.join(args.output, f"{variant}.json"))
        all_metrics.append((variant, metrics))

    df_comparison = compare_variants(all_metrics, save_path=os.path.join(args.output, "comparison.csv"))
    print("\nComparison:")
    print(df_comparison.to_string(index=False))
    return 0


def run_genfile(args):
    writer = ManifestWriter(args.manifest, args.base_dir)
    for entry in args.entries:
        name, sep, file_name = entry.partition("=")
        if not sep:
            raise FisherfaceError("Entries must look like NAME=FILE", actual=entry)
        writer.add_entry(name, file_name)

    n = writer.write()
    print(f"{args.manifest} created with {n} entries.")
    return 0


def build_parser():
    parser = argparse.ArgumentParser(description='Fisherface (PCA + LDA) face recognition')
    parser.add_argument('--log-level', default=None, help='Logging level (default: config.LOG_LEVEL)')
    parser.add_argument('--quiet', action='store_true', help='Only print results')
    subparsers = parser.add_subparsers(dest='command', help='Command to run')

    train_parser = subparsers.add_parser('train', help='Train a model from a manifest')
    train_parser.add_argument('manifest', help='Manifest of "<classId> <personName> <imagePath>" lines')
    train_parser.add_argument('--model', default=config.DEFAULT_MODEL_FILE,
                              help='Model file to write')

    search_parser = subparsers.add_parser('recognize', help='Search the model for a probe face')
    search_parser.add_argument('image', help='Pre-processed probe image')
    search_parser.add_argument('--model', default=config.DEFAULT_MODEL_FILE,
                               help='Trained model file')
    search_parser.add_argument('--variant', default=config.DEFAULT_VARIANT, choices=config.VARIANTS,
                               help='Classifier variant (default: %(default)s)')

    evaluate_parser = subparsers.add_parser('evaluate', help='Evaluate a model on a labelled manifest')
    evaluate_parser.add_argument('manifest', help='Labelled probe manifest')
    evaluate_parser.add_argument('--model', default=config.DEFAULT_MODEL_FILE,
                                 help='Trained model file')
    evaluate_parser.add_argument('--variant', default=None, choices=config.VARIANTS,
                                 help='Evaluate a single variant (default: all)')
    evaluate_parser.add_argument('--output', default=config.METRICS_PATH,
                                 help='Directory for metrics files')

    genfile_parser = subparsers.add_parser('genfile', help='Create a training manifest')
    genfile_parser.add_argument('manifest', help='Manifest file to write')
    genfile_parser.add_argument('entries', nargs='+', help='NAME=FILE entries')
    genfile_parser.add_argument('--base-dir', default='', help='Directory prepended to each file')

    return parser


COMMANDS = {
    'train': run_train,
    'recognize': run_recognize,
    'evaluate': run_evaluate,
    'genfile': run_genfile,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    config.VERBOSE = not args.quiet
    config.setup_logging(args.log_level)

    try:
        return COMMANDS[args.command](args)
    except FisherfaceError as e:
        logger.error("%s failed: %s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())

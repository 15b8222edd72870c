import asyncio
import argparse
import sys
from pathlib import Path
from tech_wellbeing.pipeline import AnalysisPipeline
from tech_wellbeing.utils.logging_config import setup_logging, configure_third_party_logging
from tech_wellbeing.utils.sample_data import write_sample_dataset
from tech_wellbeing.config import get_config, create_config_template

def main():
    """Main entry point for the survey analysis pipeline"""
    parser = argparse.ArgumentParser(description="Technology usage & mental health analysis pipeline")
    parser.add_argument("--data-path", help="Path to the survey dataset")
    parser.add_argument("--project-name", help="Name of the analysis run")
    parser.add_argument("--config", help="Path to configuration file")
    parser.add_argument("--log-level", help="Logging level (defaults to LOG_LEVEL or the config file)")
    parser.add_argument("--output-dir", help="Directory for the exported results")
    parser.add_argument("--coercion-policy", choices=["sentinel", "drop", "raise"],
                        help="How values that do not match their declared type are handled")
    parser.add_argument("--skip-models", action="store_true", help="Skip predictive model training")
    parser.add_argument("--generate-sample", metavar="PATH",
                        help="Write a synthetic survey dataset to PATH and exit")
    parser.add_argument("--sample-size", type=int, default=10000, help="Rows in the synthetic dataset")
    parser.add_argument("--write-config-template", metavar="PATH",
                        help="Write a configuration template to PATH and exit")

    args = parser.parse_args()

    if args.write_config_template:
        create_config_template(args.write_config_template)
        return

    if args.generate_sample:
        path = write_sample_dataset(args.generate_sample, n_samples=args.sample_size)
        print(f"Sample dataset written to {path}")
        return

    if not args.data_path:
        parser.error("--data-path is required unless --generate-sample or --write-config-template is given")

    # Load configuration
    config = get_config(args.config)

    # Setup logging
    setup_logging(log_level=config.resolve_log_level(args.log_level), log_dir=config.paths.LOGS_DIR)
    configure_third_party_logging()

    issues = config.validate_config()
    if issues:
        for issue in issues:
            print(f"Configuration error: {issue}")
        sys.exit(1)

    # Validate data path exists
    if not Path(args.data_path).exists():
        print(f"Error: Data file not found at {args.data_path}")
        sys.exit(1)

    async def run_pipeline():
        """Run the analysis pipeline"""
        pipeline = AnalysisPipeline(config)

        result = await pipeline.run_pipeline(
            data_path=args.data_path,
            project_name=args.project_name,
            run_models=not args.skip_models,
            coercion_policy=args.coercion_policy,
            output_dir=args.output_dir
        )

        if result.get('status') == 'failed':
            print(f"Pipeline failed: {result.get('error')}")
            sys.exit(1)

        print("Pipeline completed successfully")
        print(f"Project: {result.get('project_name')}")
        print(f"Records analysed: {result.get('feature_report', {}).get('n_records')}")
        print(f"Derivation errors: {len(result.get('derivation_errors') or [])}")

        significant = [r for r in result.get('association_results') or [] if r.significant]
        print(f"Significant associations: {len(significant)}")
        for r in significant:
            print(f"  {r.variable_a} x {r.variable_b}: {r.test} p={r.p_value:.4g}")

        training_report = result.get('training_report')
        if training_report:
            print(f"Models trained: {training_report['successful_models']}/{training_report['models_trained']}")
            print(f"Best classifier: {training_report['best_classifier']}")

        if result.get('exported_files'):
            print(f"Results exported to {args.output_dir}")

    # Run the async pipeline
    asyncio.run(run_pipeline())

if __name__ == "__main__":
    main()

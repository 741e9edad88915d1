import os
from datetime import datetime

from .base import SubcommandPlugin
from sparkctl.lib import batch_lib
from sparkctl.lib import config_lib
from sparkctl.lib.benchmark_lib import resolve_benchmark_settings
from sparkctl.lib.report_lib import export_results
from sparkctl.lib.utils_lib import ConfigurationError, print_banner


class BenchAllPlugin(SubcommandPlugin):
    def get_name(self):
        return "bench-all"

    def get_order(self):
        return 50

    def get_parser(self, subparsers):
        parser = subparsers.add_parser("bench-all", help="Switch to and benchmark every catalog model in turn")
        parser.add_argument("--single-node", action="store_true", help="Only single node models")
        parser.add_argument("--multi-node", action="store_true", help="Only multi node models")
        parser.add_argument("--skip-token", action="store_true", help="Skip models that need an HF token")
        parser.add_argument("--models", help="Comma separated catalog numbers, e.g. '1,3,5' (filters are ignored)")
        parser.add_argument(
            "--profile", choices=batch_lib.BATCH_PROFILES, default="short", help="Benchmark profile (default: short)"
        )
        parser.add_argument("--prompts", type=int, help="Number of prompts per model")
        parser.add_argument("--input-len", type=int, help="Random input length in tokens")
        parser.add_argument("--output-len", type=int, help="Random output length in tokens")
        parser.add_argument("--output-dir", help="Result directory (default benchmark_results/all_models_<timestamp>)")
        parser.add_argument("--dry-run", action="store_true", help="Show the selected models and exit")
        parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
        parser.set_defaults(_plugin=self)
        return parser

    def get_epilog(self):
        return """
Bench-All Commands:
  sparkctl bench-all --dry-run                         Show which models would be benchmarked
  sparkctl bench-all --single-node --profile quick -y  All single node models, quick profile
  sparkctl bench-all --models 1,3,5                    Selected catalog entries only"""

    def _print_plan(self, bench, models, output_dir):
        print_banner("SGLang Benchmark All Models")
        print("Configuration:")
        print(f"  Profile:        {bench.profile}")
        print(f"  Num Prompts:    {bench.num_prompts}")
        print(f"  Input Length:   {bench.input_len} tokens")
        print(f"  Output Length:  {bench.output_len} tokens")
        print(f"  Output Dir:     {output_dir}")
        print("")
        print(f"Models to benchmark ({len(models)} total):")
        for profile in models:
            nodes = f"TP={profile.tp}"
            if profile.nodes > 1:
                nodes += f" ({profile.nodes} nodes)"
            print(f"  {profile.short_name} - {nodes}")
        print("")

    def run(self, args):
        config_dir = args.config_dir or config_lib.default_config_dir()
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        output_dir = args.output_dir or os.path.join("benchmark_results", f"all_models_{ts}")

        bench = resolve_benchmark_settings(
            args.profile, num_prompts=args.prompts, input_len=args.input_len, output_len=args.output_len
        )
        models = batch_lib.select_models(
            single_node=args.single_node,
            multi_node=args.multi_node,
            skip_token=args.skip_token,
            models_csv=args.models,
            has_token=config_lib.has_hf_token(config_dir),
        )
        self._print_plan(bench, models, output_dir)

        if args.dry_run:
            print("Dry run - exiting without benchmarking.")
            return
        if not models:
            raise ConfigurationError("No models to benchmark", remediation="Check the filters and HF_TOKEN")
        if not args.yes:
            answer = input(f"Start benchmarking {len(models)} models? This may take a while. (y/N): ")
            if answer.strip().lower() not in ("y", "yes"):
                print("Cancelled.")
                return

        batch = batch_lib.cluster_batch(config_dir, models, bench, output_dir)
        results = batch.run()
        summary, paths = export_results(results, bench, output_dir, ts, batch.total_seconds)
        print(summary)

from .base import SubcommandPlugin
from sparkctl.lib import benchmark_lib
from sparkctl.lib.utils_lib import print_banner


class BenchPlugin(SubcommandPlugin):
    def get_name(self):
        return "bench"

    def get_order(self):
        return 40

    def get_parser(self, subparsers):
        parser = subparsers.add_parser("bench", help="Benchmark the running cluster with sglang.bench_serving")
        parser.add_argument(
            "profile", nargs="?", default="quick", choices=benchmark_lib.PROFILE_NAMES, help="Benchmark profile"
        )
        parser.add_argument("--host", default=benchmark_lib.DEFAULT_HOST, help="Server host (default 127.0.0.1)")
        parser.add_argument("-p", "--port", type=int, help="Server port (default SGLANG_PORT)")
        parser.add_argument("-n", "--num-prompts", type=int, help="Number of prompts")
        parser.add_argument("-i", "--input-len", type=int, help="Random input length in tokens")
        parser.add_argument("-o", "--output-len", type=int, help="Random output length in tokens")
        parser.add_argument("-r", "--request-rate", help="Requests per second ('inf' for no limit)")
        parser.add_argument("-c", "--max-concurrency", type=int, help="Maximum concurrent requests")
        parser.add_argument("--output-dir", default="benchmark_results", help="Directory for the result JSON")
        parser.add_argument("--no-docker", action="store_true", help="Run bench_serving natively instead of in the image")
        parser.set_defaults(_plugin=self)
        return parser

    def get_epilog(self):
        return """
Bench Commands:
  sparkctl bench                                       Quick benchmark (10 prompts)
  sparkctl bench throughput                            Throughput profile
  sparkctl bench -n 200 -i 1024 -o 256 -c 32           Custom run (overrides disable the preset)
  sparkctl bench --no-docker --output-dir /tmp/bench   Native bench_serving"""

    def run(self, args):
        settings = self.load_settings(args)
        bench = benchmark_lib.resolve_benchmark_settings(
            args.profile,
            num_prompts=args.num_prompts,
            input_len=args.input_len,
            output_len=args.output_len,
            request_rate=args.request_rate,
            max_concurrency=args.max_concurrency,
        )
        port = args.port or settings.sglang_port
        print_banner(f"SGLang Benchmark ({bench.profile})")
        output_file, metrics = benchmark_lib.run_benchmark(
            bench,
            settings.model,
            settings.image,
            args.output_dir,
            host=args.host,
            port=port,
            use_docker=not args.no_docker,
            hf_token=settings.hf_token,
        )
        print_banner("Benchmark Results")
        if metrics:
            benchmark_lib.print_benchmark_results(bench, metrics, output_file)
        else:
            print(f"  Could not parse results from {output_file}")

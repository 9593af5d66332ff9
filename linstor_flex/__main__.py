import sys
import argparse
from easypy.bunch import Bunch


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv

    # Anything that isn't one of our own commands belongs to the FlexVolume protocol,
    # which must answer in JSON even for verbs it doesn't know
    if not argv or argv[0] not in ("info", "test", "--version", "-h", "--help"):
        return _call(argv)

    parser = argparse.ArgumentParser(
        description="LINSTOR FlexVolume driver")
    parser.add_argument("--version", action="store_true", help="Print the version of this driver")
    parser.set_defaults(func=lambda args: _version(args) if args.version else parser.print_help())

    subparsers = parser.add_subparsers()

    info_parse = subparsers.add_parser("info", help='Print versioning information for this driver')
    info_parse.add_argument("--output", default="json", choices=['json', 'yaml'], help="Output format")
    info_parse.set_defaults(func=_info)

    test_parse = subparsers.add_parser("test", help='Start unit tests')
    test_parse.set_defaults(func=_test)

    args = parser.parse_args(argv, namespace=Bunch())
    args.pop("func")(args)


def _version(args):
    from . configuration import Config
    print(Config.plugin_version)


def _info(args):
    from . configuration import Config
    conf = Config()
    info = dict(
        name=conf.plugin_name, version=conf.plugin_version, backend=str(conf.backend), node=conf.node_name,
    )
    if args.output == "yaml":
        import yaml
        yaml.dump(info, sys.stdout)
    elif args.output == "json":
        import json
        json.dump(info, sys.stdout)
    else:
        assert False, f"invalid output format: {args.output}"


def _test(args):
    """Runs the tests without code coverage"""
    import pytest
    sys.exit(pytest.main(["-x", "tests", "-s", "-v"]))


def _call(argv):
    from . configuration import Config
    from . logging import logger, init_logging
    from . driver import FlexVolumeDriver

    conf = Config()
    init_logging(level=conf.log_level, log_file=conf.log_file)
    logger.info(f"called with {', '.join(argv)}")

    out, code = FlexVolumeDriver(config=conf).call(argv)

    logger.info(f"responded to {argv[0] if argv else '<nothing>'}: {out}")
    print(out, end="")
    sys.exit(code)


if __name__ == '__main__':
    main()

"""
CLI commands for validating, querying and rendering library XML files.
"""

import argparse
import logging
import sys
from pathlib import Path

from .config import Settings, init_data_dir
from .errors import LibraryXMLError, ValidationError
from .registry import SchemaRegistry
from .transform import TransformEngine
from .validation import XmlValidator


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def _settings(args) -> Settings:
    return Settings.from_env(Path(args.data_dir) if args.data_dir else None)


def cmd_init(args):
    """Install bundled schemas, rules, DTDs and stylesheets into the data root."""
    setup_logging(args.verbose)

    settings = _settings(args)
    copied = init_data_dir(settings.data_dir, overwrite=args.force)
    print(f"✓ Installed {copied} file(s) into {settings.data_dir}")
    return 0


def cmd_validate(args):
    """Validate an XML file against a registered schema or DTD."""
    setup_logging(args.verbose)

    try:
        validator = XmlValidator(SchemaRegistry(_settings(args)))
        content = Path(args.file).read_bytes()
        if args.dtd:
            validator.validate_with_dtd(content, args.schema)
        else:
            validator.validate(content, args.schema)
    except ValidationError as e:
        print(f"✗ {args.file} is not valid against {args.schema}:")
        for message in e.messages:
            print(f"    {message}")
        return 1
    except (LibraryXMLError, OSError) as e:
        print(f"✗ Validation could not run: {e}")
        return 1

    kind = "DTD" if args.dtd else "schema"
    print(f"✓ {args.file} is valid against {kind} {args.schema}")
    return 0


def cmd_query(args):
    """Evaluate an XPath expression against an XML file."""
    setup_logging(args.verbose)

    try:
        engine = TransformEngine(_settings(args))
        results = engine.query_xpath(Path(args.file).read_bytes(), args.expression)
    except (LibraryXMLError, OSError) as e:
        print(f"✗ Query failed: {e}")
        return 1

    for value in results:
        print(value)
    print(f"✓ {len(results)} result(s)", file=sys.stderr)
    return 0


def cmd_transform(args):
    """Render an XML file through a named XSLT stylesheet."""
    setup_logging(args.verbose)

    try:
        engine = TransformEngine(_settings(args))
        html = engine.transform_to_html(Path(args.file).read_bytes(), args.stylesheet)
    except (LibraryXMLError, OSError) as e:
        print(f"✗ Transform failed: {e}")
        return 1

    if args.output:
        Path(args.output).write_text(html, encoding="utf-8")
        print(f"✓ Wrote {args.output}")
    else:
        print(html)
    return 0


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Library XML data management CLI",
        prog="library-xml"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )
    parser.add_argument(
        "--data-dir",
        help="Data root (default: $LIBRARY_DATA_DIR or ./Data)"
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands"
    )

    # Init command
    init_parser = subparsers.add_parser(
        "init",
        help="Install bundled schemas, DTDs and stylesheets into the data root"
    )
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite files that already exist"
    )
    init_parser.set_defaults(func=cmd_init)

    # Validate command
    validate_parser = subparsers.add_parser(
        "validate",
        help="Validate an XML file against a registered schema"
    )
    validate_parser.add_argument("file", help="XML file to validate")
    validate_parser.add_argument(
        "--schema",
        required=True,
        help="Registered schema name (Books, Members, Borrowings)"
    )
    validate_parser.add_argument(
        "--dtd",
        action="store_true",
        help="Validate against the DTD of the same name instead of the XSD"
    )
    validate_parser.set_defaults(func=cmd_validate)

    # Query command
    query_parser = subparsers.add_parser(
        "query",
        help="Print the string value of every node matching an XPath expression"
    )
    query_parser.add_argument("file", help="XML file to query")
    query_parser.add_argument("expression", help="XPath 1.0 expression")
    query_parser.set_defaults(func=cmd_query)

    # Transform command
    transform_parser = subparsers.add_parser(
        "transform",
        help="Render an XML file with an XSLT stylesheet from the data root"
    )
    transform_parser.add_argument("file", help="XML file to transform")
    transform_parser.add_argument(
        "--stylesheet",
        required=True,
        help="Stylesheet name in Transforms/ (e.g. books-to-html)"
    )
    transform_parser.add_argument(
        "-o", "--output",
        help="Write the result to this file instead of stdout"
    )
    transform_parser.set_defaults(func=cmd_transform)

    args = parser.parse_args(argv)

    if not hasattr(args, 'func'):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

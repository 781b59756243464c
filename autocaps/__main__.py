"""Package entry point for ``python -m autocaps``.

WHY: Lets users run the CLI without installing the console script.

HOW: Delegates to autocaps.cli.main().
"""

if __name__ == "__main__":
    from autocaps.cli import main
    main()

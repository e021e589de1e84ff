"""Command line interface for testing configuration loading"""
from pathlib import Path

from . import settings_conf, DEFAULTS


def main():
    """Display loaded configuration"""
    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings_conf.items():
        if key.endswith(('password', 'secret')) and value:
            value = '********'
        print(f"{key}: {value}")

    # Save example configuration file
    example = Path("settings.conf.example")
    if not example.exists():
        with open(example, "w") as f:
            f.write("[DEFAULT]\n")
            for key, value in DEFAULTS.items():
                f.write(f"{key} = {value}\n")
        print(f"\nWrote {example}")


if __name__ == "__main__":
    main()

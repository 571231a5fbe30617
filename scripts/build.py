import PyInstaller.__main__


def main() -> None:
    PyInstaller.__main__.run(
        ["--onefile", "assessment_cli/main.py", "--name", "assessment-cli"]
    )


if __name__ == "__main__":
    main()

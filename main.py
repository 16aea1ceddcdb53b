# nuitka-project: --enable-plugin=pylint-warnings
# nuitka-project: --warn-implicit-exceptions
# nuitka-project: --onefile
# nuitka-project: --lto=yes
# nuitka-project: --noinclude-unittest-mode=allow
# nuitka-project: --nofollow-import-to=setuptools

from vmandump import main

if __name__ == "__main__":
    main()

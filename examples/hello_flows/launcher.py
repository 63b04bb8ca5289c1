import sys

from demo_runtime import DemoRuntime

from flowpack.launcher import main

if __name__ == "__main__":
    sys.exit(main(runtime=DemoRuntime(), source_file=__file__))

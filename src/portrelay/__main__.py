# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

# Make the portrelay package executable with the default behaviour of
# running the portrelay command.
# This is not a docstring to avoid changing the string output of portrelay.


from portrelay.script import run

if __name__ == "__main__":
    run()

"""Run the image-sync command line tool with `python -m image_sync`."""

from image_sync.tool.image_sync import main

if __name__ == "__main__":
    main()

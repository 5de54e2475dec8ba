"""clipstitch — sequential clip capture and re-encoding.

Play an ordered list of video clips one after another, composite their
frames onto a fixed-size raster at a fixed frame rate, mix their audio
into one continuous bus, and encode the captured stream into a single
container.
"""

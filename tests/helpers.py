from arena import TileType


def clear_board(world):
    for x in range(world.width):
        for y in range(world.height):
            world.set_tile_type((x, y), TileType.WALKABLE)
    return world

"""Point-in-polygon matching of booking locations against service regions.

Points are ``{"lat": .., "lng": ..}`` mappings (or objects with ``lat`` /
``lng`` attributes); lng is treated as x and lat as y.

Boundary behaviour is whatever the ray cast yields and is not adjusted: with
the half-open crossing test below, a point on a left-hand edge (smaller lng)
counts as inside and a point on a right-hand edge counts as outside. Vertices
follow the same arithmetic and have no special casing.
"""


def _coords(point) -> tuple[float, float]:
    if isinstance(point, dict):
        return float(point["lat"]), float(point["lng"])
    return float(point.lat), float(point.lng)


def point_in_polygon(point, polygon) -> bool:
    if not polygon or len(polygon) < 3:
        return False

    lat, lng = _coords(point)
    vertices = [_coords(v) for v in polygon]
    inside = False

    j = len(vertices) - 1
    for i in range(len(vertices)):
        yi, xi = vertices[i]
        yj, xj = vertices[j]
        # the edge straddles the ray's latitude and meets it east of the point
        if (yi > lat) != (yj > lat):
            x_cross = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lng < x_cross:
                inside = not inside
        j = i

    return inside


def matching_regions(point, regions) -> set[int]:
    """
    IDs of active regions containing the point.

    An empty set is a normal answer; callers treat it as "no restriction".
    """
    return {
        region.id
        for region in regions
        if region.is_active and point_in_polygon(point, region.polygon)
    }

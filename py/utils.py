import matplotlib.pyplot as plt


def id_to_color(idx: int):
    blue = idx * 5 % 256
    green = idx * 12 % 256
    red = idx * 23 % 256
    return (red, green, blue)


def visualize_images(images, columns: int = 1):
    n = len(images)
    if n == 0:
        return
    rows = -(-n // columns)
    fig, axs = plt.subplots(rows, columns, figsize=(10 * columns, 5 * rows), squeeze=False)
    for index, ax in enumerate(axs.flat):
        ax.axis("off")
        if index < n:
            ax.imshow(images[index])

    plt.tight_layout()
    plt.show()


def box_iou(box_a, box_b) -> float:
    """
    Calculate the Intersection over Union (IoU) between two bounding boxes.

    Args:
        box_a (list or tuple): [x, y, width, height] of the first box.
        box_b (list or tuple): [x, y, width, height] of the second box.

    Returns:
        float: IoU value between the two boxes (0.0 to 1.0).
    """
    xa, ya, wa, ha = box_a
    xb, yb, wb, hb = box_b

    # Intersection rectangle
    left = max(xa, xb)
    top = max(ya, yb)
    right = min(xa + wa, xb + wb)
    bottom = min(ya + ha, yb + hb)

    intersection_area = max(0.0, right - left) * max(0.0, bottom - top)
    union_area = wa * ha + wb * hb - intersection_area

    if union_area <= 0:
        return 0.0

    return intersection_area / float(union_area)


def union_box(box_a, box_b) -> tuple[float, float, float, float]:
    """
    Smallest axis-aligned box containing both inputs, as [x, y, width, height].
    """
    xa, ya, wa, ha = box_a
    xb, yb, wb, hb = box_b

    left = min(xa, xb)
    top = min(ya, yb)
    right = max(xa + wa, xb + wb)
    bottom = max(ya + ha, yb + hb)

    return (left, top, right - left, bottom - top)


def to_display_box(
    box, tensor_size: tuple[int, int], display_size: tuple[int, int], mirror: bool = False
) -> tuple[float, float, float, float]:
    """
    Map a box from the detector's tensor space to display space.

    Args:
        box (list or tuple): [x, y, width, height] in tensor coordinates.
        tensor_size (tuple): (width, height) of the detector tensor.
        display_size (tuple): (width, height) of the display surface.
        mirror (bool): Flip horizontally, as needed for a mirrored camera preview.

    Returns:
        tuple: [x, y, width, height] in display coordinates.
    """
    x, y, width, height = box
    scale_x = display_size[0] / tensor_size[0]
    scale_y = display_size[1] / tensor_size[1]

    box_x = x * scale_x
    if mirror:
        box_x = display_size[0] - box_x - width * scale_x

    return (box_x, y * scale_y, width * scale_x, height * scale_y)

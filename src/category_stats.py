import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
from pathlib import Path

from AnnotationModel import AnnotationStore, walk_shapes
from CategoryRegistry import color_to_hex


def category_count_frame(store: AnnotationStore) -> pd.DataFrame:
    """One row per category in registry order: name, color, shape_count and share of all shapes."""
    counts = store.category_counts()
    df = pd.DataFrame(
        [{'name': c.name, 'color': color_to_hex(c.color), 'shape_count': counts.get(c.name, 0)}
         for c in store.categories],
        columns=['name', 'color', 'shape_count'],
    )
    df['shape_count'] = df['shape_count'].astype(int)
    total = df['shape_count'].sum()
    df['share'] = df['shape_count'] / total if total > 0 else 0.0
    return df


def image_summary_frame(store: AnnotationStore) -> pd.DataFrame:
    """One row per loaded image; shape_count includes nested parts."""
    rows = [
        {
            'file_name': image.file_name,
            'width': image.width,
            'height': image.height,
            'shape_count': sum(1 for _ in walk_shapes(image.shapes)),
            'has_annotations': image.has_annotations,
        }
        for image in store.images
    ]
    return pd.DataFrame(rows, columns=['file_name', 'width', 'height', 'shape_count', 'has_annotations'])


def save_category_chart(store: AnnotationStore, out_path) -> Path:
    """Bar chart of shapes per category, each bar in its category's color."""
    out_path = Path(out_path)
    df = category_count_frame(store)
    #RGBA 0-255 -> matplotlib's 0-1
    colors = np.array([c.color for c in store.categories], dtype=float).reshape(-1, 4) / 255.0

    fig, ax = plt.subplots(figsize=(max(4.0, 0.6 * len(df) + 2), 4))
    ax.bar(df['name'], df['shape_count'], color=colors if len(df) else None, edgecolor='black')
    ax.set_xlabel('Category')
    ax.set_ylabel('Shapes')
    ax.set_title('Shapes per Category')
    ax.grid(True, axis='y')
    plt.xticks(rotation=45, ha='right')
    fig.tight_layout()

    out_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(out_path)
    plt.close(fig)
    print(f"Saved category chart to {out_path}")
    return out_path

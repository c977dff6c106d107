"""StyleMix Studio：虛擬試穿、文字生圖與圖片編輯的後端服務。"""

__version__ = "0.1.0"
